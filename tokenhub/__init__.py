"""Tokenhub - token-gated API marketplace settlement service."""

__version__ = "0.1.0"
