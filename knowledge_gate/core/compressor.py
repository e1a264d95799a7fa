"""
Chat history compression.

Shrinks a transcript before it is resent upstream:

Layer 1: the most recent turns are kept verbatim as immediate context.
Layer 2: older turns are cut into fixed-size chunks, each chunk is condensed
into one abbreviated line, and the lines are joined into a single system
turn.
"""

import asyncio
import logging
from typing import List, Protocol, Sequence

from .transcript import Role, Transcript, Turn, estimate_token_count, transcript_chars

logger = logging.getLogger(__name__)

IMMEDIATE_CONTEXT_COUNT = 3
MICRO_SUMMARY_CHUNK_SIZE = 5
# ~3.5k tokens at 4 chars per token
COMPRESSION_THRESHOLD_CHARS = 3500 * 4
SINGLE_TURN_LIMIT = 75
SUMMARY_PREFIX = "CONTEXT SUMMARY: "


class SummarizerPort(Protocol):
    """Condenses a batch of turns into one abbreviated line."""

    async def summarize_turns(self, turns: Sequence[Turn]) -> str:
        ...


def abbreviate_turn(turn: Turn, limit: int = SINGLE_TURN_LIMIT) -> str:
    """Single-message compressor: truncate instead of calling a summarizer."""
    text = turn.text
    return text[:limit] + "..." if len(text) > limit else text


def chunk_turns(turns: Sequence[Turn], size: int) -> List[List[Turn]]:
    return [list(turns[i:i + size]) for i in range(0, len(turns), size)]


class HistoryCompressor:
    """Pure transcript transform; keeps no state between calls."""

    def __init__(
        self,
        summarizer: SummarizerPort,
        threshold_chars: int = COMPRESSION_THRESHOLD_CHARS,
        immediate_context: int = IMMEDIATE_CONTEXT_COUNT,
        chunk_size: int = MICRO_SUMMARY_CHUNK_SIZE,
    ):
        if threshold_chars <= 0:
            raise ValueError("threshold_chars must be > 0")
        if immediate_context < 0:
            raise ValueError("immediate_context cannot be negative")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.summarizer = summarizer
        self.threshold_chars = threshold_chars
        self.immediate_context = immediate_context
        self.chunk_size = chunk_size

    async def compress(self, transcript: Sequence[Turn]) -> Transcript:
        """Return a transcript no larger than needed to carry the conversation.

        Args:
            transcript: Ordered turns, oldest first; never modified

        Returns:
            The input (as a tuple) when below the threshold or too short to
            chunk, otherwise [summary turn] + the most recent turns
        """
        turns = tuple(transcript)
        total_chars = transcript_chars(turns)
        if total_chars < self.threshold_chars:
            return turns

        split = len(turns) - self.immediate_context
        history = turns[:split] if split > 0 else ()
        immediate = turns[split:] if split > 0 else turns
        chunks = chunk_turns(history, self.chunk_size)
        if not chunks:
            return turns

        logger.info(
            "Compressing %d turns (~%d tokens) into %d chunk summaries",
            len(turns), estimate_token_count(turns), len(chunks),
        )
        summaries = await asyncio.gather(
            *(self.summarizer.summarize_turns(chunk) for chunk in chunks)
        )
        summary_turn = Turn(
            role=Role.SYSTEM,
            text=SUMMARY_PREFIX + "; ".join(summaries),
        )
        return (summary_turn,) + tuple(immediate)
