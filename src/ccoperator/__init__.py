"""Reconciliation core for Cruise Control operations."""

__version__ = "0.1.0"
