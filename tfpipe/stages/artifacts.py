"""Per-environment artifact file names and CI meta-data keys.

Every name carries the environment so plans and outputs of different
environments can never be mixed up in the shared artifact store.
"""

from __future__ import annotations

from typing import Dict


def plan_file_names(environment: str) -> Dict[str, str]:
    return {
        "plan": f"tfplan-{environment}.bin",
        "json": f"plan-{environment}.json",
        "text": f"plan-{environment}.txt",
    }


def metadata_keys(environment: str) -> Dict[str, str]:
    return {
        "add": f"{environment}-plan-add",
        "change": f"{environment}-plan-change",
        "destroy": f"{environment}-plan-destroy",
        "sha256": f"{environment}-plan-sha256",
    }


def outputs_file_name(environment: str) -> str:
    return f"outputs-{environment}.json"


def apply_log_name(environment: str) -> str:
    return f"apply-{environment}.log"
