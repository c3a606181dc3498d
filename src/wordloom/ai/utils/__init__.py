"""Small helpers shared across the AI pipeline."""

from .tokens import estimate_tokens, truncate_head, truncate_tail

__all__ = ["estimate_tokens", "truncate_head", "truncate_tail"]
