"""Deployment step graph and environment sequencing."""

from .sequencer import SECURITY_GATE_KEY, build_deployment_graph, step_key, verify_sequence_invariants  # noqa: F401
from .step_graph import BlockStep, CommandStep, StepGraph, TextField  # noqa: F401
