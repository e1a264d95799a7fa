"""
Concurrent fan-out of one query to several models.

Every candidate gets its own authorize + execute task. Tasks share the
request's cancellation token and never abort each other: a failed task
becomes an error result next to its successful siblings.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence, Set

from .budget import BudgetAuthorizer
from .errors import AuthorizationCancelled, OrchestrationError
from .executor import Message, SingleCallExecutor
from .pricing import Model
from .results import CallResult, CancellationToken

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[CallResult], None]
BalanceReader = Callable[[], float]


class FanOutDispatcher:
    """Drives multi, summary, conflict and custom modes."""

    def __init__(self, authorizer: BudgetAuthorizer, executor: SingleCallExecutor):
        self.authorizer = authorizer
        self.executor = executor
        # Tasks abandoned by a cancelled request finish their network call here.
        self._in_flight: Set[asyncio.Task] = set()

    async def dispatch(
        self,
        models: Sequence[Model],
        messages: List[Message],
        balance: BalanceReader,
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> List[CallResult]:
        """Query all models concurrently.

        Args:
            models: Candidate models, one task each
            messages: Messages sent to every model
            balance: Reads the current balance for each authorization
            cancel_token: Request-scoped cancellation flag
            on_update: Called once per task, in completion order

        Returns:
            One terminal result per model in submission order, or an empty
            list if the request was cancelled
        """
        token = cancel_token or CancellationToken()
        notify = on_update or (lambda result: None)
        if token.cancelled or not models:
            return []

        tasks = [
            asyncio.create_task(self._run_one(model, messages, balance, token))
            for model in models
        ]
        for task in tasks:
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

        cancel_waiter = asyncio.create_task(token.wait())
        remaining = set(tasks)
        try:
            while remaining:
                done, _ = await asyncio.wait(
                    remaining | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if token.cancelled:
                    logger.info(
                        "Fan-out cancelled with %d of %d task(s) still running",
                        len(remaining), len(tasks),
                    )
                    return []
                for task in done:
                    remaining.discard(task)
                    notify(task.result())
        finally:
            cancel_waiter.cancel()

        results = [task.result() for task in tasks]
        succeeded = sum(1 for result in results if result.is_success)
        logger.info("Fan-out finished: %d/%d succeeded", succeeded, len(results))
        return results

    async def _run_one(
        self,
        model: Model,
        messages: List[Message],
        balance: BalanceReader,
        token: CancellationToken,
    ) -> CallResult:
        pending = CallResult.pending(model)
        if token.cancelled:
            return pending.cancel()

        try:
            call = await self.authorizer.authorize(model, None, balance())
            result = await self.executor.execute(call, messages)
        except AuthorizationCancelled:
            return pending.cancel()
        except OrchestrationError as exc:
            logger.warning("Model %s failed: %s", model.id, exc)
            return pending.fail(exc)
        except Exception as exc:
            logger.exception("Unexpected failure from %s", model.id)
            return pending.fail(exc)

        if token.cancelled:
            logger.info("Discarding result from %s after cancellation", model.id)
            return pending.cancel()
        return result
