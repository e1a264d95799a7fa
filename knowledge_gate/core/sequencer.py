"""
Fallback sequencing for standard mode.

Tries candidate models strictly in order, one at a time, until one answers:

    Idle -> Trying(i) -> Success | Trying(i + 1) | Exhausted

Automatically selected candidates fall through to the next one on failure;
an explicit user choice is never silently replaced.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .budget import BudgetAuthorizer
from .errors import (
    AllProvidersFailed,
    AuthorizationError,
    BudgetTooLow,
    UpstreamFailure,
    UserSelectedModelFailed,
)
from .executor import Message, SingleCallExecutor
from .pricing import Model
from .results import CallResult, CancellationToken

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]
BalanceReader = Callable[[], float]


@dataclass
class FallbackInfo:
    """Which candidates were tried, in order, and which one answered."""
    attempted: List[str] = field(default_factory=list)
    used: Optional[str] = None

    @property
    def fallback_used(self) -> bool:
        return self.used is not None and len(self.attempted) > 1


@dataclass(frozen=True)
class SequenceOutcome:
    result: CallResult
    fallback: FallbackInfo


class FallbackSequencer:
    """Drives standard mode over an ordered candidate list."""

    def __init__(self, authorizer: BudgetAuthorizer, executor: SingleCallExecutor):
        self.authorizer = authorizer
        self.executor = executor

    async def run(
        self,
        candidates: Sequence[Model],
        messages: List[Message],
        balance: BalanceReader,
        is_user_selection: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> Optional[SequenceOutcome]:
        """Try candidates until one succeeds.

        Args:
            candidates: Models in priority order
            messages: Messages sent to every candidate
            balance: Reads the current balance before each authorization
            is_user_selection: Disables fallback when the user chose the models
            cancel_token: Request-scoped cancellation flag
            on_status: Receives intermediate progress messages

        Returns:
            The first successful result, or None if the request was cancelled

        Raises:
            UserSelectedModelFailed: If a user-selected candidate fails
            AllProvidersFailed: If every candidate failed
            BudgetTooLow: If a user-selected candidate cannot buy a single token
            AuthorizationError: If the balance is short or a confirmation was dismissed
        """
        token = cancel_token or CancellationToken()
        notify = on_status or (lambda message: None)
        info = FallbackInfo()

        for index, model in enumerate(candidates):
            if token.cancelled:
                return None

            info.attempted.append(model.name)
            notify(f"Querying {model.name}...")
            try:
                call = await self.authorizer.authorize(model, None, balance())
                result = await self.executor.execute(call, messages)
            except BudgetTooLow as exc:
                if is_user_selection:
                    raise
                logger.warning("Skipping %s: %s", model.id, exc)
                if index < len(candidates) - 1:
                    notify(f"Budget too low for {model.name}, trying next...")
                continue
            except AuthorizationError:
                raise
            except Exception as exc:
                if token.cancelled:
                    return None
                if is_user_selection:
                    logger.warning("User-selected model %s failed: %s", model.id, exc)
                    raise UserSelectedModelFailed(model.id, exc) from exc
                if isinstance(exc, UpstreamFailure):
                    logger.warning("Model %s failed, falling back: %s", model.id, exc)
                else:
                    logger.exception("Unexpected failure from %s, falling back", model.id)
                if index < len(candidates) - 1:
                    notify(f"Model {model.name} failed, trying next...")
                continue

            if token.cancelled:
                logger.info("Discarding result from %s after cancellation", model.id)
                return None

            info.used = model.name
            return SequenceOutcome(result=result, fallback=info)

        raise AllProvidersFailed(info.attempted)
