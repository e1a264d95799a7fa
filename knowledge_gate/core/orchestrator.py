"""
Query orchestration across the five search modes.

Routes a query to the Fallback Sequencer (standard) or the Fan-Out
Dispatcher (multi, summary, conflict, custom), applies the summary and
conflict post-processing, settles the actual spend once per request and
hands the charges to the ledger.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional, Protocol, Sequence, Tuple

from .balance import BalanceService, Settlement
from .budget import BudgetAuthorizer
from .conflict import DEFAULT_MIN_SIMILARITY, ConflictPair, detect_conflicts, mark_conflicts
from .dispatcher import FanOutDispatcher, UpdateCallback
from .errors import (
    AuthorizationError,
    InsufficientBalance,
    NoModelsSelected,
    NoSuccessfulResponses,
    OrchestrationError,
    TerminalError,
)
from .executor import Message, SingleCallExecutor
from .pricing import Model, ModelCatalog, to_decimal
from .results import CallResult, CancellationToken, SearchMode
from .selection import ModelPreference, resolve_candidates
from .sequencer import FallbackInfo, FallbackSequencer, StatusCallback
from knowledge_gate.storage.models import ChargeRecord

logger = logging.getLogger(__name__)

SUMMARY_RESULT_ID = "summary"


class LedgerSink(Protocol):
    """Receives a request's completed charges for persistence."""

    def record(self, charges: Sequence[ChargeRecord]) -> None:
        ...


class OutcomeStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class QueryRequest:
    """A user query bound to a mode and its candidate models."""
    text: str
    mode: SearchMode
    candidates: Tuple[Model, ...]
    is_user_selection: bool = False

    @classmethod
    def for_mode(
        cls,
        text: str,
        mode: SearchMode,
        catalog: ModelCatalog,
        preferences: Optional[Sequence[ModelPreference]] = None,
        custom_ids: Sequence[str] = (),
    ) -> "QueryRequest":
        candidates = resolve_candidates(mode, catalog, preferences, custom_ids)
        return cls(
            text=text,
            mode=mode,
            candidates=candidates.models,
            is_user_selection=candidates.is_user_selection,
        )


@dataclass(frozen=True)
class QueryOutcome:
    """Terminal state of one request."""
    status: OutcomeStatus
    mode: SearchMode
    results: Tuple[CallResult, ...] = ()
    history_results: Tuple[CallResult, ...] = ()
    charges: Tuple[ChargeRecord, ...] = ()
    error: Optional[OrchestrationError] = None
    fallback: Optional[FallbackInfo] = None
    settlement: Optional[Settlement] = None
    conflicts: FrozenSet[ConflictPair] = field(default_factory=frozenset)

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @property
    def successful_results(self) -> List[CallResult]:
        return [r for r in self.results if r.is_success]


def build_summary_prompt(texts: Sequence[str]) -> str:
    return f"Summarize these texts: {' '.join(texts)}"


class QueryOrchestrator:
    """Runs one request end to end.

    The orchestrator owns every CallResult of a request; the ledger owns the
    charge records once they are handed over.
    """

    def __init__(
        self,
        authorizer: BudgetAuthorizer,
        executor: SingleCallExecutor,
        balance: BalanceService,
        ledger: Optional[LedgerSink] = None,
        auxiliary_model: Optional[Model] = None,
        conflict_threshold: float = DEFAULT_MIN_SIMILARITY,
    ):
        self.authorizer = authorizer
        self.executor = executor
        self.balance = balance
        self.ledger = ledger
        self.auxiliary_model = auxiliary_model
        self.conflict_threshold = conflict_threshold
        self.sequencer = FallbackSequencer(authorizer, executor)
        self.dispatcher = FanOutDispatcher(authorizer, executor)

    async def run(
        self,
        request: QueryRequest,
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[UpdateCallback] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> QueryOutcome:
        """Execute a query in its mode and settle its cost.

        Args:
            request: Query, mode and candidate models
            cancel_token: Caller-held stop flag for this request
            on_update: Receives each result as it becomes terminal
            on_status: Receives progress messages (standard mode)

        Returns:
            QueryOutcome; terminal errors are reported in ``error`` with
            status FAILED, never raised

        Raises:
            ValueError: If the query text is empty, or summary mode has no
                auxiliary model configured
        """
        text = request.text.strip()
        if not text:
            raise ValueError("query is required and cannot be empty")
        if request.mode is SearchMode.SUMMARY and self.auxiliary_model is None:
            raise ValueError("summary mode requires an auxiliary model")

        token = cancel_token or CancellationToken()
        notify = on_update or (lambda result: None)
        messages: List[Message] = [{"role": "user", "content": text}]
        mode = request.mode

        logger.info(
            "Running %s query against %d candidate(s)", mode.value, len(request.candidates)
        )
        fallback: Optional[FallbackInfo] = None
        conflicts: FrozenSet[ConflictPair] = frozenset()
        try:
            if self.balance.available < float(self.authorizer.flat_fee):
                raise InsufficientBalance(self.balance.available, float(self.authorizer.flat_fee))
            if not request.candidates:
                raise NoModelsSelected(mode.value)

            if mode is SearchMode.STANDARD:
                outcome = await self.sequencer.run(
                    request.candidates,
                    messages,
                    lambda: self.balance.available,
                    is_user_selection=request.is_user_selection,
                    cancel_token=token,
                    on_status=on_status,
                )
                if outcome is None:
                    return self._cancelled(mode)
                notify(outcome.result)
                results = [outcome.result]
                history = list(results)
                fallback = outcome.fallback
            else:
                results = await self.dispatcher.dispatch(
                    request.candidates,
                    messages,
                    lambda: self.balance.available,
                    cancel_token=token,
                    on_update=notify,
                )
                if token.cancelled:
                    return self._cancelled(mode)
                history = list(results)

                if mode is SearchMode.SUMMARY:
                    summary = await self._summarize(results)
                    if token.cancelled:
                        return self._cancelled(mode)
                    notify(summary)
                    results = results + [summary]
                    history = [summary]
                elif mode is SearchMode.CONFLICT:
                    conflicts = detect_conflicts(results, self.conflict_threshold)
                    results = mark_conflicts(results, conflicts)
                    history = list(results)
        except (TerminalError, AuthorizationError) as exc:
            if token.cancelled:
                return self._cancelled(mode)
            logger.warning("%s query failed: %s", mode.value, exc)
            return QueryOutcome(status=OutcomeStatus.FAILED, mode=mode, error=exc)

        if token.cancelled:
            return self._cancelled(mode)

        charges = [r.charge_record(mode.value) for r in results if r.is_success]
        settlement = await self._settle(charges)
        return QueryOutcome(
            status=OutcomeStatus.COMPLETED,
            mode=mode,
            results=tuple(results),
            history_results=tuple(history),
            charges=tuple(charges),
            fallback=fallback,
            settlement=settlement,
            conflicts=conflicts,
        )

    async def _summarize(self, results: Sequence[CallResult]) -> CallResult:
        texts = [r.text for r in results if r.is_success and r.text]
        if not texts:
            raise NoSuccessfulResponses()

        model = self.auxiliary_model
        pending = CallResult.pending(model, result_id=SUMMARY_RESULT_ID)
        try:
            # The auxiliary call is spent from the balance without confirmation.
            available = self.balance.available
            call = await self.authorizer.authorize(model, available, available)
            return await self.executor.execute(
                call,
                [{"role": "user", "content": build_summary_prompt(texts)}],
                result_id=SUMMARY_RESULT_ID,
            )
        except OrchestrationError as exc:
            logger.warning("Summary call to %s failed: %s", model.id, exc)
            return pending.fail(exc)

    async def _settle(self, charges: List[ChargeRecord]) -> Optional[Settlement]:
        if not charges:
            return None
        total = sum((to_decimal(c.sparks_charged) for c in charges), Decimal("0"))
        settlement = await self.balance.settle(total)
        if self.ledger is not None:
            await asyncio.to_thread(self.ledger.record, charges)
        return settlement

    @staticmethod
    def _cancelled(mode: SearchMode) -> QueryOutcome:
        logger.info("%s query cancelled; results discarded", mode.value)
        return QueryOutcome(status=OutcomeStatus.CANCELLED, mode=mode)
