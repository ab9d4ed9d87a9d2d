"""arc - declarative configuration reconciliation for Aruba switches."""

__version__ = "0.2.0"
