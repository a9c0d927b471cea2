"""Feedback triage and patch-lifecycle engine."""

__version__ = "0.1.0"
