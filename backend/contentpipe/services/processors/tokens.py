"""
Token counting for chunk sizing.

Uses tiktoken's encoding for the requested model. When the model is
unknown to tiktoken, or the encoding cannot be loaded (tiktoken fetches
BPE files on first use), the count falls back to ceil(len(text) / 4).
``count`` never raises: chunking must keep working without a tokenizer.
"""

import math
from functools import lru_cache

import tiktoken

from contentpipe.core.logging import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4


@lru_cache(maxsize=32)
def _encoding_for(model: str):
    """Cached encoder lookup; None means use the character heuristic."""
    try:
        return tiktoken.encoding_for_model(model)
    except Exception as e:
        logger.debug(
            "tokenizer_unavailable",
            model=model,
            error=str(e),
            error_type=type(e).__name__,
        )
        return None


def estimate_tokens(text: str) -> int:
    """Character-ratio approximation: 1 token ≈ 4 characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenCounter:
    """
    Counts tokens for a text span.

    Usage:
    ------
    counter = TokenCounter()
    counter.count("Hello world")            # exact, gpt-4 encoding
    counter.count("Hello world", "custom")  # heuristic fallback
    """

    def __init__(self, model: str = "gpt-4"):
        self.model = model

    def count(self, text: str, model: str | None = None) -> int:
        """
        Count tokens in text.

        Args:
            text: Text to count tokens in
            model: Model whose tokenizer to use (defaults to self.model)

        Returns:
            Number of tokens (>= 0)
        """
        if not text:
            return 0

        encoding = _encoding_for(model or self.model)
        if encoding is None:
            return estimate_tokens(text)

        try:
            return len(encoding.encode(text, disallowed_special=()))
        except Exception:
            return estimate_tokens(text)
