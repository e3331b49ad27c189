"""Adaptive sync orchestration for connected workspace content."""

__version__ = "0.1.0"
