"""
Conversation transcript turns.

A transcript is an ordered tuple of turns that only ever grows by append;
every transform returns a new tuple.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .token_counter import estimate_tokens


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Turn:
    """One message of a conversation."""
    role: Role
    text: str
    timestamp: float = field(default_factory=time.time)
    turn_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tokens_used: Optional[int] = None
    sparks_spent: Optional[float] = None
    cost_usd: Optional[float] = None

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.text}


Transcript = Tuple[Turn, ...]


def append_turn(transcript: Sequence[Turn], turn: Turn) -> Transcript:
    return tuple(transcript) + (turn,)


def transcript_chars(turns: Iterable[Turn]) -> int:
    return sum(len(turn.text) for turn in turns)


def estimate_token_count(turns: Iterable[Turn]) -> int:
    return estimate_tokens(transcript_chars(turns))


def to_messages(turns: Iterable[Turn]) -> List[Dict[str, str]]:
    return [turn.to_message() for turn in turns]
