from __future__ import annotations


class PipelineError(Exception):
    """Base class for deployment pipeline errors."""


class ConfigError(PipelineError):
    """Raised when deploy configuration or CLI input fails validation."""


class AuthenticationError(PipelineError):
    """Raised when the CI identity token cannot be exchanged for a secrets session."""


class RequiredSecretMissing(PipelineError):
    """Raised when a mandatory provider has no usable secret for an environment."""


class ValidationError(PipelineError):
    """Raised when configuration-syntax validation of the working directory fails."""


class PlanError(PipelineError):
    """Raised when the plan command (or rendering its plan) fails."""


class PlanSummaryError(PlanError):
    """Raised when plan output matches neither the JSON form nor the summary grammar."""


class ApplyError(PipelineError):
    """Raised when applying a reviewed plan fails."""


class ApprovalMissing(ApplyError):
    """Raised when a production apply runs without a recorded approval."""


class BackendUnreachable(PipelineError):
    """Raised when the state backend rejects the configured credentials."""


class InitializationFailed(PipelineError):
    """Raised when the state client cannot be initialized against the backend."""


class StateLocked(PipelineError):
    """Raised when the remote state holds a lock and no override was requested."""


class LockParseError(StateLocked):
    """Raised when a lock listing reports a lock but its ID cannot be extracted."""


class StageTransitionError(PipelineError):
    """Raised on an illegal stage state transition."""


class AnalysisFailure(PipelineError):
    """Non-fatal: an optional plan analyzer failed. Logged, never propagated."""


class BackupFailure(PipelineError):
    """Non-fatal: the pre-apply state backup failed. Logged, apply proceeds."""


class StepGraphError(PipelineError):
    """Raised when a pipeline step graph is malformed or breaks sequencing rules."""
