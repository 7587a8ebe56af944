"""Reconcile internal threads with GitHub issues and pull requests."""

__version__ = "0.1.0"
