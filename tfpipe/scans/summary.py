"""Coarse roll-up of security scanner results.

The scanners run outside this package and drop JSON reports into a directory.
Only the severity of each finding is read; any object carrying a ``severity``
(or ``Severity``) key counts as one finding, except under keys that list
passing or skipped checks.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..infra.contracts import CiAgent
from ..utils.fs import atomic_write_text

FAIL_SEVERITIES = ("CRITICAL", "HIGH")
IGNORED_KEYS = frozenset({"passed_checks", "skipped_checks", "passed", "skipped", "Passed", "Skipped"})

VERDICT_STYLE = {"pass": "success", "warn": "warning", "fail": "error"}


@dataclass
class ScanSummary:
    reports: List[str] = field(default_factory=list)
    unreadable: List[str] = field(default_factory=list)
    by_severity: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_severity.values())

    @property
    def verdict(self) -> str:
        if any(self.by_severity.get(s, 0) for s in FAIL_SEVERITIES):
            return "fail"
        if self.total or self.unreadable:
            return "warn"
        return "pass"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "total_findings": self.total,
            "by_severity": dict(sorted(self.by_severity.items())),
            "reports": list(self.reports),
            "unreadable": list(self.unreadable),
        }


def _severities(node: Any) -> Iterable[str]:
    if isinstance(node, dict):
        if "severity" in node or "Severity" in node:
            sev = node.get("severity", node.get("Severity"))
            yield str(sev or "UNKNOWN").upper()
            return
        for k, v in node.items():
            if k in IGNORED_KEYS:
                continue
            yield from _severities(v)
    elif isinstance(node, list):
        for item in node:
            yield from _severities(item)


def summarize_scan_reports(paths: Iterable[Path]) -> ScanSummary:
    summary = ScanSummary()
    for p in sorted(Path(x) for x in paths):
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            print(f"[scan] WARNING: unreadable report {p}: {e}")
            summary.unreadable.append(p.name)
            continue
        summary.reports.append(p.name)
        for sev in _severities(data):
            summary.by_severity[sev] = summary.by_severity.get(sev, 0) + 1
    return summary


def render_annotation(summary: ScanSummary) -> str:
    lines = [f"**Security scan: {summary.verdict.upper()}** ({summary.total} finding(s) in {len(summary.reports)} report(s))"]
    if summary.by_severity:
        lines.append("")
        lines.extend(f"- {sev}: {n}" for sev, n in sorted(summary.by_severity.items()))
    if summary.unreadable:
        lines.append("")
        lines.append(f"Unreadable reports: {', '.join(summary.unreadable)}")
    return "\n".join(lines)


def publish_scan_summary(summary: ScanSummary, *, output: Path, agent: CiAgent) -> None:
    atomic_write_text(output, json.dumps(summary.to_dict(), indent=2) + "\n")
    agent.upload_artifacts([output])
    agent.annotate(render_annotation(summary), style=VERDICT_STYLE[summary.verdict], context="security-scan")
