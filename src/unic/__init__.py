"""Engagement contest scoring and prize distribution engine."""

__version__ = "0.1.0"
