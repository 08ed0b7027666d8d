"""Simulated-trading competition engine."""

__version__ = "1.0.0"
