"""Consistency rules, distribution steering, psychometric plans, reverse-fill planning and run state for survey answering."""

__version__ = "0.1.0"