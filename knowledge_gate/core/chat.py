"""
Chat continuation on top of a finished query.

A context token remembers the original query and the model that answered
it; each follow-up compresses the transcript, calls that model once and
settles the charge like any other request.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .balance import BalanceService, Settlement
from .budget import BudgetAuthorizer
from .compressor import HistoryCompressor
from .executor import SingleCallExecutor
from .orchestrator import LedgerSink
from .pricing import ModelCatalog
from .results import CallResult
from .transcript import Role, Transcript, Turn, append_turn
from knowledge_gate.storage.models import ChargeRecord

logger = logging.getLogger(__name__)

CHAT_MODE = "chat"
FALLBACK_CHAT_MODEL_ID = "google/gemini-flash-1.5"

GATEKEEPER_PREAMBLE = (
    "You are the Gatekeeper, the official AI assistant for the KnowledgeGate "
    "application. Your personality is helpful, knowledgeable, and slightly "
    "mysterious. You are continuing a conversation that began with the user's "
    "query: \"{query}\". The initial response has already been provided. "
    "Continue the conversation naturally based on the message history. If you "
    "see a 'CONTEXT SUMMARY', use it to understand the older parts of the "
    "conversation. Use double newlines to separate paragraphs."
)


def generate_context_token(query: str, results: Sequence[CallResult]) -> Optional[str]:
    """Encode the query and the first answering model for later follow-ups.

    Returns:
        JSON token, or None if no result succeeded
    """
    for result in results:
        if result.is_success:
            return json.dumps({"originalQuery": query, "modelId": result.model_id})
    return None


def parse_context_token(token: str, fallback_model_id: str = FALLBACK_CHAT_MODEL_ID) -> Dict[str, str]:
    """Decode a context token.

    Raises:
        ValueError: If the token is missing or not a JSON object
    """
    if not token:
        raise ValueError("Chat context is missing. Cannot continue.")
    try:
        payload = json.loads(token)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid context token provided: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("Invalid context token provided: expected an object")
    return {
        "originalQuery": str(payload.get("originalQuery", "")),
        "modelId": payload.get("modelId") or fallback_model_id,
    }


@dataclass(frozen=True)
class ChatReply:
    transcript: Transcript
    turn: Turn
    charge: ChargeRecord
    settlement: Settlement


class ChatSession:
    """Continues conversations for one user's balance."""

    def __init__(
        self,
        authorizer: BudgetAuthorizer,
        executor: SingleCallExecutor,
        balance: BalanceService,
        compressor: HistoryCompressor,
        catalog: ModelCatalog,
        ledger: Optional[LedgerSink] = None,
        fallback_model_id: str = FALLBACK_CHAT_MODEL_ID,
    ):
        self.authorizer = authorizer
        self.executor = executor
        self.balance = balance
        self.compressor = compressor
        self.catalog = catalog
        self.ledger = ledger
        self.fallback_model_id = fallback_model_id

    def build_messages(self, turns: Sequence[Turn], original_query: str) -> List[Dict[str, str]]:
        """Convert turns to upstream messages, folding the preamble into a leading user turn."""
        preamble = GATEKEEPER_PREAMBLE.format(query=original_query)
        messages = []
        for index, turn in enumerate(turns):
            if index == 0 and turn.role is Role.USER:
                content = f"{preamble}\n\n---\n\nUSER'S FIRST MESSAGE:\n{turn.text}"
                messages.append({"role": turn.role.value, "content": content})
            else:
                messages.append(turn.to_message())
        return messages

    async def continue_chat(self, context_token: str, transcript: Sequence[Turn]) -> ChatReply:
        """Answer the latest turn of a conversation.

        Args:
            context_token: Token produced by ``generate_context_token``
            transcript: Conversation so far, oldest first; never modified

        Returns:
            ChatReply with the extended transcript and the new assistant turn

        Raises:
            ValueError: If the token or transcript is missing or invalid
            OrchestrationError: If authorization or the upstream call fails
        """
        context = parse_context_token(context_token, self.fallback_model_id)
        if not transcript:
            raise ValueError("No recent messages provided to continue chat.")

        model = self.catalog.get_model(context["modelId"])
        compressed = await self.compressor.compress(transcript)
        messages = self.build_messages(compressed, context["originalQuery"])

        available = self.balance.available
        call = await self.authorizer.authorize(model, available, available)
        result = await self.executor.execute(call, messages)

        turn = Turn(
            role=Role.ASSISTANT,
            text=result.text or "",
            tokens_used=result.tokens_used,
            sparks_spent=result.sparks_spent,
            cost_usd=result.cost_usd,
        )
        charge = result.charge_record(CHAT_MODE)
        settlement = await self.balance.settle(charge.sparks_charged)
        if self.ledger is not None:
            await asyncio.to_thread(self.ledger.record, [charge])
        logger.info("Chat turn answered by %s for %.4f Sparks", model.id, charge.sparks_charged)
        return ChatReply(
            transcript=append_turn(transcript, turn),
            turn=turn,
            charge=charge,
            settlement=settlement,
        )
