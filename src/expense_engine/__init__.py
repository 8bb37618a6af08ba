"""Multi-tenant expense submission with conditional, multi-step approval."""

__version__ = "0.1.0"
