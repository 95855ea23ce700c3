"""Change counts for a computed plan.

The JSON rendering (``tofu show -json``) is authoritative. The text grammar is
only a fallback for when no JSON rendering is available:

    Plan: <n> to add, <n> to change, <n> to destroy.
    Plan: <n> to import, <n> to add, <n> to change, <n> to destroy.
    No changes.

Input matching neither form raises PlanSummaryError rather than guessing zero.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List

from ..infra.errors import PlanSummaryError
from ..infra.models import ChangeSummary

PLAN_LINE_RE = re.compile(
    r"Plan:\s+(?:(?P<import>\d+)\s+to\s+import,\s+)?"
    r"(?P<add>\d+)\s+to\s+add,\s+"
    r"(?P<change>\d+)\s+to\s+change,\s+"
    r"(?P<destroy>\d+)\s+to\s+destroy"
)
NO_CHANGES_RE = re.compile(r"^\s*No changes\.", re.MULTILINE)


def parse_plan_text(text: str) -> ChangeSummary:
    m = PLAN_LINE_RE.search(text or "")
    if m:
        return ChangeSummary(
            additions=int(m.group("add")),
            changes=int(m.group("change")),
            destructions=int(m.group("destroy")),
            source="text",
        )
    if NO_CHANGES_RE.search(text or ""):
        return ChangeSummary(source="no-changes")
    raise PlanSummaryError("plan output has no 'Plan: N to add, N to change, N to destroy' line and no 'No changes.' sentinel")


def _count_actions(actions: Iterable[str]) -> Dict[str, int]:
    acts = list(actions)
    if "create" in acts and "delete" in acts:
        # Replacement counts as one add and one destroy, the same as the CLI summary.
        return {"add": 1, "change": 0, "destroy": 1}
    if "create" in acts:
        return {"add": 1, "change": 0, "destroy": 0}
    if "update" in acts:
        return {"add": 0, "change": 1, "destroy": 0}
    if "delete" in acts:
        return {"add": 0, "change": 0, "destroy": 1}
    return {"add": 0, "change": 0, "destroy": 0}


def parse_plan_json(plan: Dict[str, Any]) -> ChangeSummary:
    if not isinstance(plan, dict):
        raise PlanSummaryError("plan JSON must be an object")
    changes = plan.get("resource_changes")
    if changes is None:
        changes = []
    if not isinstance(changes, list):
        raise PlanSummaryError("plan JSON resource_changes must be a list")

    totals = {"add": 0, "change": 0, "destroy": 0}
    for rc in changes:
        if not isinstance(rc, dict):
            continue
        actions = (rc.get("change") or {}).get("actions") or []
        for k, v in _count_actions(actions).items():
            totals[k] += v

    source = "json" if any(totals.values()) else "no-changes"
    return ChangeSummary(
        additions=totals["add"],
        changes=totals["change"],
        destructions=totals["destroy"],
        source=source,
    )


def summarize_plan(*, json_text: str = "", plan_text: str = "") -> ChangeSummary:
    """Structured first, fenced text grammar second."""
    if json_text.strip():
        try:
            data = json.loads(json_text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return parse_plan_json(data)
    return parse_plan_text(plan_text)


def changed_addresses(plan: Dict[str, Any]) -> List[str]:
    """Addresses of resources with a non-no-op action, in plan order."""
    out: List[str] = []
    if not isinstance(plan, dict):
        return out
    for rc in plan.get("resource_changes") or []:
        if not isinstance(rc, dict):
            continue
        actions = (rc.get("change") or {}).get("actions") or []
        if any(a in ("create", "update", "delete") for a in actions):
            out.append(str(rc.get("address", "")))
    return out
