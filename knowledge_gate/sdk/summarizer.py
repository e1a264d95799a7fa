"""
Chat history summarizer backed by the upstream client.

Condenses a chunk of turns into one aggressively abbreviated line with a
fast, cheap model. Single turns are truncated locally instead.
"""

import logging
from typing import Sequence

from ..core.compressor import abbreviate_turn
from ..core.executor import UpstreamPort
from ..core.transcript import Turn

logger = logging.getLogger(__name__)

COMPRESSOR_PROMPT = """You are an expert chat history compressor. Your task is to create an extremely concise, one-line summary of the provided conversation snippet.
Your summary MUST be very short and use aggressive, creative abbreviations.

Here are some examples of the style you should use:
- "function" -> "fn"
- "component" -> "comp"
- "response" -> "resp"
- "configuration" -> "config"
- "discussed" -> "disc'd"
- "User asked about React components, and the assistant explained the useState hook." -> "U: React comps -> A: exp'd useState."
- "The user got an error 'cannot find module' and the assistant suggested checking 'tsconfig.json'." -> "err: 'cannot find module' -> sol: check tsconfig.json"

Now, compress the following conversation into a single, abbreviated line."""


def render_conversation(turns: Sequence[Turn]) -> str:
    lines = [f"- {turn.role.value}: {turn.text}" for turn in turns]
    return "Conversation to summarize:\n" + "\n".join(lines)


class UpstreamSummarizer:
    """Summarization collaborator for the HistoryCompressor."""

    def __init__(self, upstream: UpstreamPort, model_id: str):
        if not model_id:
            raise ValueError("model_id is required and cannot be empty")
        self.upstream = upstream
        self.model_id = model_id

    async def summarize_turns(self, turns: Sequence[Turn]) -> str:
        if not turns:
            return ""
        if len(turns) == 1:
            return abbreviate_turn(turns[0])

        response = await self.upstream.complete(
            self.model_id,
            [
                {"role": "system", "content": COMPRESSOR_PROMPT},
                {"role": "user", "content": render_conversation(turns)},
            ],
        )
        lines = response.text.strip().splitlines()
        summary = lines[0].strip() if lines else ""
        logger.debug("Summarized %d turns into %d chars", len(turns), len(summary))
        return summary
