"""Headend: multicast encoder process orchestrator."""

__version__ = "1.0.0"
