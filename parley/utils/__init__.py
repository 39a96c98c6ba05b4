"""Utility functions for parley."""

from parley.utils.tokens import count_tokens

__all__ = ["count_tokens"]
