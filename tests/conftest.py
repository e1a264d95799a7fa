"""
Shared test doubles for the orchestration engine.
"""

import pytest

from knowledge_gate.core.executor import UpstreamResponse
from knowledge_gate.core.pricing import Model, ModelPricing, Tier
from knowledge_gate.core.token_counter import TokenUsage


def make_model(
    model_id,
    tier=Tier.BASIC,
    prompt=0.000001,
    completion=0.000002,
    is_free=False,
    rank=0,
    family=None,
):
    return Model(
        id=model_id,
        name=model_id.split("/")[-1],
        family=family or model_id.split("/")[0],
        tier=tier,
        pricing=ModelPricing(prompt=prompt, completion=completion),
        is_free=is_free,
        rank=rank,
    )


def make_reply(text, prompt_tokens=1000, completion_tokens=500):
    return UpstreamResponse(text=text, usage=TokenUsage(prompt_tokens, completion_tokens))


class FakeUpstream:
    """Upstream port with a scripted outcome per model id.

    An outcome is an UpstreamResponse, an exception to raise, or an async
    callable producing either.
    """

    def __init__(self, outcomes=None):
        self.outcomes = dict(outcomes or {})
        self.calls = []

    async def complete(self, model_id, messages, max_tokens=None):
        self.calls.append({"model": model_id, "messages": messages, "max_tokens": max_tokens})
        outcome = self.outcomes[model_id]
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def called_models(self):
        return [call["model"] for call in self.calls]


class FakeConfirmation:
    def __init__(self, answer):
        self.answer = answer
        self.asked = []

    async def request_ceiling(self, model, available_balance):
        self.asked.append(model.id)
        return self.answer


class FakeLedger:
    def __init__(self):
        self.batches = []

    def record(self, charges):
        self.batches.append(list(charges))

    @property
    def records(self):
        return [charge for batch in self.batches for charge in batch]


@pytest.fixture
def model_factory():
    return make_model


@pytest.fixture
def reply_factory():
    return make_reply


@pytest.fixture
def upstream_factory():
    return FakeUpstream


@pytest.fixture
def confirmation_factory():
    return FakeConfirmation


@pytest.fixture
def ledger():
    return FakeLedger()
