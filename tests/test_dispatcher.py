"""
Unit tests for concurrent fan-out dispatch.
"""

import asyncio

import pytest

from knowledge_gate.core.budget import BudgetAuthorizer
from knowledge_gate.core.dispatcher import FanOutDispatcher
from knowledge_gate.core.errors import UpstreamError
from knowledge_gate.core.executor import SingleCallExecutor
from knowledge_gate.core.pricing import Tier
from knowledge_gate.core.results import CallStatus, CancellationToken

MESSAGES = [{"role": "user", "content": "Is Pluto a planet?"}]


def _balance():
    return 100.0


def _delayed(response, delay):
    async def outcome():
        await asyncio.sleep(delay)
        return response
    return outcome


class TestFanOutDispatcher:
    """Test FanOutDispatcher.dispatch."""

    @pytest.fixture(autouse=True)
    def _setup(self, model_factory):
        self.models = [model_factory(f"{family}/m") for family in ("openai", "google", "meta")]

    def _dispatcher(self, upstream, confirmation=None):
        return FanOutDispatcher(BudgetAuthorizer(confirmation), SingleCallExecutor(upstream))

    def test_failure_does_not_abort_siblings(self, upstream_factory, reply_factory):
        """One failing task yields an error result next to two successes."""
        upstream = upstream_factory({
            "openai/m": reply_factory("No, a dwarf planet."),
            "google/m": UpstreamError(500, "boom"),
            "meta/m": reply_factory("No."),
        })
        updates = []

        results = asyncio.run(
            self._dispatcher(upstream).dispatch(self.models, MESSAGES, _balance, on_update=updates.append)
        )

        assert len(results) == 3
        assert [r.model_id for r in results] == ["openai/m", "google/m", "meta/m"]
        assert [r.status for r in results] == [
            CallStatus.SUCCESS, CallStatus.ERROR, CallStatus.SUCCESS,
        ]
        assert results[1].error_kind == "UpstreamError"
        assert len(updates) == 3
        assert all(r.is_terminal for r in updates)

    def test_unexpected_error_stays_in_its_task(self, upstream_factory, reply_factory):
        """A non-upstream exception becomes an error result for that model only."""
        upstream = upstream_factory({
            "openai/m": reply_factory("No, a dwarf planet."),
            "google/m": RuntimeError("malformed response"),
            "meta/m": reply_factory("No."),
        })

        results = asyncio.run(self._dispatcher(upstream).dispatch(self.models, MESSAGES, _balance))

        assert [r.status for r in results] == [
            CallStatus.SUCCESS, CallStatus.ERROR, CallStatus.SUCCESS,
        ]
        assert results[1].error_kind == "RuntimeError"
        assert results[1].error == "malformed response"

    def test_updates_arrive_in_completion_order(self, upstream_factory, reply_factory):
        upstream = upstream_factory({
            "openai/m": _delayed(reply_factory("slow"), 0.05),
            "google/m": _delayed(reply_factory("fast"), 0.0),
            "meta/m": _delayed(reply_factory("medium"), 0.02),
        })
        updates = []

        results = asyncio.run(
            self._dispatcher(upstream).dispatch(self.models, MESSAGES, _balance, on_update=updates.append)
        )

        assert [r.model_id for r in updates] == ["google/m", "meta/m", "openai/m"]
        assert [r.model_id for r in results] == ["openai/m", "google/m", "meta/m"]

    def test_cancel_after_first_result(self, upstream_factory, reply_factory):
        """Stopping after task 1 completes discards every result."""
        token = CancellationToken()

        async def blocked():
            await asyncio.sleep(0.05)
            return reply_factory("late")

        upstream = upstream_factory({
            "openai/m": reply_factory("first"),
            "google/m": blocked,
            "meta/m": blocked,
        })
        updates = []

        def on_update(result):
            updates.append(result)
            token.cancel()

        async def scenario():
            dispatcher = self._dispatcher(upstream)
            results = await dispatcher.dispatch(
                self.models, MESSAGES, _balance, cancel_token=token, on_update=on_update
            )
            # let the abandoned tasks finish their network calls
            await asyncio.sleep(0.1)
            return results, dispatcher

        results, dispatcher = asyncio.run(scenario())

        assert results == []
        assert [r.model_id for r in updates] == ["openai/m"]
        assert dispatcher._in_flight == set()

    def test_already_cancelled(self, upstream_factory):
        token = CancellationToken()
        token.cancel()
        upstream = upstream_factory()

        results = asyncio.run(
            self._dispatcher(upstream).dispatch(self.models, MESSAGES, _balance, cancel_token=token)
        )

        assert results == []
        assert upstream.calls == []

    def test_no_models(self, upstream_factory):
        results = asyncio.run(self._dispatcher(upstream_factory()).dispatch([], MESSAGES, _balance))
        assert results == []

    def test_dismissed_confirmation_marks_task_cancelled(
        self, model_factory, upstream_factory, reply_factory, confirmation_factory
    ):
        """A dismissed spend prompt cancels that task only."""
        premium = model_factory("anthropic/opus", tier=Tier.PREMIUM)
        upstream = upstream_factory({"openai/m": reply_factory("No.")})
        dispatcher = self._dispatcher(upstream, confirmation_factory(None))

        results = asyncio.run(dispatcher.dispatch([self.models[0], premium], MESSAGES, _balance))

        assert [r.status for r in results] == [CallStatus.SUCCESS, CallStatus.CANCELLED]
        assert upstream.called_models == ["openai/m"]
