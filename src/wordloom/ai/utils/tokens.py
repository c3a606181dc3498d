"""Token estimation utilities shared by every budget check in the pipeline."""

from __future__ import annotations

import math

# Average bytes per token for English prose (GPT-style tokenization)
BYTES_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string.

    Uses a byte-based heuristic of ~4 UTF-8 bytes per token. Truncating a
    string never increases its estimate, which is what the context budget
    relies on.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (minimum 1 for non-empty text, 0 for empty).
    """
    if not text:
        return 0
    return max(1, math.ceil(len(text.encode("utf-8", errors="ignore")) / BYTES_PER_TOKEN))


def truncate_head(text: str, max_tokens: int) -> str:
    """Return the longest prefix of *text* whose estimate fits *max_tokens*."""

    if not text or max_tokens <= 0:
        return ""
    data = text.encode("utf-8", errors="ignore")
    limit = max_tokens * BYTES_PER_TOKEN
    if len(data) <= limit:
        return text
    return data[:limit].decode("utf-8", errors="ignore")


def truncate_tail(text: str, max_tokens: int) -> str:
    """Return the longest suffix of *text* whose estimate fits *max_tokens*."""

    if not text or max_tokens <= 0:
        return ""
    data = text.encode("utf-8", errors="ignore")
    limit = max_tokens * BYTES_PER_TOKEN
    if len(data) <= limit:
        return text
    return data[-limit:].decode("utf-8", errors="ignore")


__all__ = [
    "BYTES_PER_TOKEN",
    "estimate_tokens",
    "truncate_head",
    "truncate_tail",
]
