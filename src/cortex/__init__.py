"""Cortex: grounded research summaries, chat and deal analysis."""

__version__ = "0.1.0"
