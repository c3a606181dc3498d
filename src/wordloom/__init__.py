"""Wordloom: inline completions and context-aware generation for documents."""

__version__ = "0.3.0"

__all__ = ["__version__"]
