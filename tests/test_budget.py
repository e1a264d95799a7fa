"""
Unit tests for budget authorization.

Tests token cap derivation, confirmation handling and authorization errors.
"""

import asyncio

import pytest

from knowledge_gate.core.budget import (
    BudgetAuthorizer,
    derive_token_cap,
    requires_confirmation,
)
from knowledge_gate.core.errors import AuthorizationCancelled, BudgetTooLow, InsufficientBalance
from knowledge_gate.core.pricing import Model, ModelPricing, Tier


def _model(model_id="openai/gpt-4o", tier=Tier.PREMIUM, completion=0.000002, is_free=False):
    return Model(
        id=model_id,
        name=model_id,
        family=model_id.split("/")[0],
        tier=tier,
        pricing=ModelPricing(prompt=0.000001, completion=completion),
        is_free=is_free,
    )


class FakeConfirmation:
    """Confirmation port that answers every request with a fixed ceiling."""

    def __init__(self, answer):
        self.answer = answer
        self.asked = []

    async def request_ceiling(self, model, available_balance):
        self.asked.append((model.id, available_balance))
        return self.answer


class TestTokenCap:
    """Test token cap derivation."""

    def test_cap_from_ceiling(self):
        """Usable Sparks are converted to USD and divided by the completion price."""
        # (2.001 - 0.001) / 1000 = 0.002 USD -> 1000 tokens at 0.000002
        assert derive_token_cap(_model(), 2.001, 0.001, 1000) == 1000

    def test_cap_rounds_down(self):
        assert derive_token_cap(_model(), 0.0025, 0.001, 1000) == 0

    def test_free_completions_are_uncapped(self):
        """A zero completion price leaves the cap unbounded for any ceiling above the fee."""
        free = _model(completion=0, is_free=True)
        for ceiling in (0.002, 1, 50, 10000):
            assert derive_token_cap(free, ceiling, 0.001, 1000) is None

    def test_ceiling_not_above_fee_buys_nothing(self):
        for ceiling in (0, 0.0005, 0.001):
            assert derive_token_cap(_model(), ceiling, 0.001, 1000) == 0

    def test_requires_confirmation(self):
        assert requires_confirmation(_model(tier=Tier.PREMIUM))
        assert requires_confirmation(_model(tier=Tier.MEDIUM))
        assert not requires_confirmation(_model(tier=Tier.BASIC))
        assert not requires_confirmation(_model(tier=Tier.PREMIUM, is_free=True))


class TestAuthorize:
    """Test BudgetAuthorizer.authorize."""

    def test_insufficient_balance(self):
        """Balance below the flat fee fails before asking anyone."""
        confirmation = FakeConfirmation(5.0)
        authorizer = BudgetAuthorizer(confirmation)

        with pytest.raises(InsufficientBalance):
            asyncio.run(authorizer.authorize(_model(), None, 0.0005))
        assert confirmation.asked == []

    def test_basic_model_uses_whole_balance(self):
        """Basic-tier models are authorized against the balance without confirmation."""
        confirmation = FakeConfirmation(1.0)
        authorizer = BudgetAuthorizer(confirmation)

        call = asyncio.run(authorizer.authorize(_model(tier=Tier.BASIC), None, 2.001))

        assert call.ceiling == 2.001
        assert call.token_cap == 1000
        assert confirmation.asked == []

    def test_free_model_is_uncapped(self):
        authorizer = BudgetAuthorizer()
        call = asyncio.run(authorizer.authorize(_model(completion=0, is_free=True), None, 10))
        assert call.token_cap is None

    def test_premium_model_asks_for_ceiling(self):
        """Premium models get the ceiling the user confirms."""
        confirmation = FakeConfirmation(2.001)
        authorizer = BudgetAuthorizer(confirmation)

        call = asyncio.run(authorizer.authorize(_model(), None, 50.0))

        assert confirmation.asked == [("openai/gpt-4o", 50.0)]
        assert call.ceiling == 2.001
        assert call.token_cap == 1000

    def test_requested_ceiling_skips_confirmation(self):
        confirmation = FakeConfirmation(1.0)
        authorizer = BudgetAuthorizer(confirmation)

        call = asyncio.run(authorizer.authorize(_model(), 2.001, 50.0))

        assert call.token_cap == 1000
        assert confirmation.asked == []

    def test_dismissed_confirmation_cancels(self):
        authorizer = BudgetAuthorizer(FakeConfirmation(None))
        with pytest.raises(AuthorizationCancelled):
            asyncio.run(authorizer.authorize(_model(), None, 50.0))

    def test_missing_confirmation_port_cancels(self):
        authorizer = BudgetAuthorizer()
        with pytest.raises(AuthorizationCancelled):
            asyncio.run(authorizer.authorize(_model(), None, 50.0))

    def test_ceiling_at_fee_is_too_low(self):
        """A ceiling equal to the flat fee cannot buy a single token."""
        authorizer = BudgetAuthorizer(FakeConfirmation(0.001))
        with pytest.raises(BudgetTooLow):
            asyncio.run(authorizer.authorize(_model(), None, 50.0))

    def test_each_call_gets_its_own_id(self):
        authorizer = BudgetAuthorizer()
        model = _model(tier=Tier.BASIC)
        first = asyncio.run(authorizer.authorize(model, None, 5))
        second = asyncio.run(authorizer.authorize(model, None, 5))
        assert first.call_id != second.call_id
