"""Batch lifecycle and expiry analytics engine for pharmaceutical inventory."""

__version__ = "1.0.0"
