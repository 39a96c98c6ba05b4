"""Token estimates used for summarization budgeting."""

from typing import Any

import tiktoken

from parley.logging import get_logger

logger = get_logger(__name__)

# Rough char-to-token ratio used when the BPE table cannot be loaded (e.g. offline).
_CHARS_PER_TOKEN = 4

_encoder: Any = None
_encoder_loaded: bool = False


def _get_encoder() -> Any:
    """Return the cl100k_base encoder, or None if its table is unavailable."""
    global _encoder, _encoder_loaded
    if _encoder_loaded:
        return _encoder
    _encoder_loaded = True
    try:
        # cl100k_base covers GPT-4 class models and approximates most others.
        _encoder = tiktoken.get_encoding("cl100k_base")
    except Exception as e:
        logger.warning("tiktoken_encoding_unavailable", error=str(e))
        _encoder = None
    return _encoder


def count_tokens(text: str) -> int:
    """Count tokens in *text*, falling back to a char/4 estimate."""
    if not text:
        return 0
    enc = _get_encoder()
    if enc is not None:
        return len(enc.encode(text, disallowed_special=()))
    return max(1, len(text) // _CHARS_PER_TOKEN)
