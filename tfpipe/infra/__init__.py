"""Shared models, contracts and errors used by every pipeline stage."""
