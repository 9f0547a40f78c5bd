"""Duplicate transaction detection and resolution for a personal-finance ledger."""

__version__ = "0.1.0"
