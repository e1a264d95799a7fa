"""
Unit tests for SDK layer.

Tests the OpenRouter client wrapper and its error mapping.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import openai
import pytest

from knowledge_gate.core.errors import UpstreamError, UpstreamFailure, UpstreamTimeout
from knowledge_gate.core.token_counter import TokenUsage
from knowledge_gate.sdk.openai_client import (
    API_KEY_ENV,
    OPENROUTER_BASE_URL,
    OpenRouterClient,
)

MESSAGES = [{"role": "user", "content": "Hello"}]
REQUEST = httpx.Request("POST", f"{OPENROUTER_BASE_URL}/chat/completions")


def _completion(content="Hi there", usage=(10, 5)):
    return SimpleNamespace(
        id="gen-123",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=usage[0], completion_tokens=usage[1]) if usage else None,
    )


class TestOpenRouterClient:
    """Test OpenRouterClient wrapper."""

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_init_success(self, mock_openai_class):
        """Test successful initialization."""
        client = OpenRouterClient(api_key="sk-test", timeout=12)

        mock_openai_class.assert_called_once()
        kwargs = mock_openai_class.call_args.kwargs
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["base_url"] == OPENROUTER_BASE_URL
        assert kwargs["max_retries"] == 0
        assert client.timeout == 12

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_init_reads_environment(self, mock_openai_class, monkeypatch):
        monkeypatch.setenv(API_KEY_ENV, "sk-env")
        OpenRouterClient()
        assert mock_openai_class.call_args.kwargs["api_key"] == "sk-env"

    def test_init_missing_key(self, monkeypatch):
        """Test initialization fails without an API key."""
        monkeypatch.delenv(API_KEY_ENV, raising=False)
        with pytest.raises(ValueError, match="API key not found"):
            OpenRouterClient()

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_complete_success(self, mock_openai_class):
        """Test a completion is converted into an UpstreamResponse."""
        create = AsyncMock(return_value=_completion())
        mock_openai_class.return_value.chat.completions.create = create
        client = OpenRouterClient(api_key="sk-test")

        response = asyncio.run(client.complete("openai/gpt-4o", MESSAGES, max_tokens=256))

        assert response.text == "Hi there"
        assert response.usage == TokenUsage(10, 5)
        assert response.response_id == "gen-123"
        create.assert_awaited_once_with(
            model="openai/gpt-4o", messages=MESSAGES, stream=False, max_tokens=256
        )

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_uncapped_call_omits_max_tokens(self, mock_openai_class):
        create = AsyncMock(return_value=_completion(usage=None))
        mock_openai_class.return_value.chat.completions.create = create
        client = OpenRouterClient(api_key="sk-test")

        response = asyncio.run(client.complete("meta/llama:free", MESSAGES))

        assert "max_tokens" not in create.call_args.kwargs
        assert response.usage is None

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_empty_choices(self, mock_openai_class):
        completion = SimpleNamespace(id="gen-1", choices=[], usage=None)
        mock_openai_class.return_value.chat.completions.create = AsyncMock(return_value=completion)

        response = asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

        assert response.text == ""

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_status_error_mapped(self, mock_openai_class):
        """Non-success HTTP statuses become UpstreamError with the body."""
        error = openai.APIStatusError(
            "bad gateway",
            response=httpx.Response(502, request=REQUEST, text="upstream down"),
            body=None,
        )
        mock_openai_class.return_value.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

        assert exc_info.value.status_code == 502
        assert exc_info.value.body == "upstream down"

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_timeout_mapped(self, mock_openai_class):
        error = openai.APITimeoutError(request=REQUEST)
        mock_openai_class.return_value.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamTimeout):
            asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_connection_error_mapped(self, mock_openai_class):
        error = openai.APIConnectionError(request=REQUEST)
        mock_openai_class.return_value.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamFailure, match="Could not reach upstream"):
            asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_empty_messages(self, mock_openai_class):
        with pytest.raises(ValueError, match="messages is required"):
            asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", []))

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_other_sdk_error_mapped(self, mock_openai_class):
        """Any remaining SDK error still surfaces as an upstream failure."""
        error = openai.APIResponseValidationError(
            response=httpx.Response(200, request=REQUEST, text="{}"),
            body={},
        )
        mock_openai_class.return_value.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamFailure, match="Upstream error from m"):
            asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

    @patch('knowledge_gate.sdk.openai_client.AsyncOpenAI')
    def test_choice_without_message(self, mock_openai_class):
        completion = SimpleNamespace(id="gen-1", choices=[SimpleNamespace(message=None)], usage=None)
        mock_openai_class.return_value.chat.completions.create = AsyncMock(return_value=completion)

        response = asyncio.run(OpenRouterClient(api_key="sk-test").complete("m", MESSAGES))

        assert response.text == ""
