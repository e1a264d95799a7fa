"""
Token counting and usage tracking.

Holds upstream usage metering and the character-based size estimate used
before a transcript is resent upstream.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the upstream provider.

    Contains exact token counts without estimation or model-specific logic.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_metering(cls, usage: Any) -> Optional["TokenUsage"]:
        """Build usage from an upstream ``usage`` block.

        Accepts either an object with ``prompt_tokens``/``completion_tokens``
        attributes or a plain mapping. Missing counts are treated as zero.

        Returns:
            TokenUsage, or None when the upstream sent no metering at all
        """
        if usage is None:
            return None
        if isinstance(usage, dict):
            prompt = usage.get("prompt_tokens")
            completion = usage.get("completion_tokens")
        else:
            prompt = getattr(usage, "prompt_tokens", None)
            completion = getattr(usage, "completion_tokens", None)
        return cls(
            prompt_tokens=int(prompt or 0),
            completion_tokens=int(completion or 0),
        )


def estimate_tokens(char_count: int) -> int:
    """Estimate tokens from a character count (4 characters ≈ 1 token)."""
    if char_count < 0:
        raise ValueError("char_count cannot be negative")
    return math.ceil(char_count / CHARS_PER_TOKEN)
