from __future__ import annotations

import os
from typing import Mapping, Optional

from ..infra.contracts import CiAgent
from ..infra.errors import ApprovalMissing
from ..infra.models import ApprovalRecord


def justification_key(environment: str) -> str:
    """Meta-data key the approval block step stores its justification under."""
    return f"approval-justification-{environment}"


def read_approval(agent: CiAgent, environment: str, *, env: Optional[Mapping[str, str]] = None) -> ApprovalRecord:
    """Load the approval for a production apply, or raise ApprovalMissing.

    The block step itself is evaluated by Buildkite; this only checks that the
    justification it collected is present before anything is applied.
    """
    env_map = env if env is not None else os.environ
    justification = (agent.get_metadata(justification_key(environment)) or "").strip()
    if not justification:
        raise ApprovalMissing(
            f"production environment {environment!r} has no approval justification "
            f"(meta-data {justification_key(environment)!r} is empty)"
        )
    approver = (
        str(env_map.get("BUILDKITE_UNBLOCKER", "") or "").strip()
        or str(env_map.get("BUILDKITE_UNBLOCKER_EMAIL", "") or "").strip()
        or "unknown"
    )
    return ApprovalRecord(environment=environment, approver=approver, justification=justification)
