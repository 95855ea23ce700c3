"""Security scan result roll-up (the scanners themselves run elsewhere)."""

from .summary import ScanSummary, publish_scan_summary, summarize_scan_reports  # noqa: F401
