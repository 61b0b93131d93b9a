"""Hosted checkout links and return-callback payment reconciliation."""

__version__ = "0.1.0"
