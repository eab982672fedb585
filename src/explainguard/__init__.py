"""Explain-guard: enforce "explain your submission" rules on moderated content."""

__version__ = "0.1.0"
