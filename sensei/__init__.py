"""Sensei: recommendations and guarded auto-approval for coding-agent terminal output."""

__version__ = "0.1.0"
