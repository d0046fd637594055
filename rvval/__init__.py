"""rvval - property identity resolution and field reconciliation for park underwriting."""

__version__ = "0.1.0"
