"""OpenTofu/Terraform deployment pipeline for Buildkite.

The package is organised the same way the pipeline runs:

- ``tfpipe.secretstore``: Vault login and per-environment credential bundles
- ``tfpipe.backend``: HTTP state backend wiring and lock checks
- ``tfpipe.stages``: plan, analysis, backup and apply stages
- ``tfpipe.orchestration``: the multi-environment step graph
- ``tfpipe.cli``: one subcommand per pipeline step
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.3.0"
