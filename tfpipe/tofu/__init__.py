"""State client (OpenTofu/Terraform) wrapper and plan output parsing."""

from .plan_summary import parse_plan_json, parse_plan_text, summarize_plan  # noqa: F401
from .runner import TofuClient  # noqa: F401
