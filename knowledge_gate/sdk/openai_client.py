"""
OpenRouter upstream client.

Wraps the OpenAI async client pointed at an OpenAI-compatible endpoint and
maps its failures onto the orchestration error taxonomy.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..core.errors import UpstreamError, UpstreamFailure, UpstreamTimeout
from ..core.executor import DEFAULT_TIMEOUT_SECONDS, UpstreamResponse
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
API_KEY_ENV = "OPENROUTER_API_KEY"
DEFAULT_HEADERS = {
    "HTTP-Referer": "https://knowlegegate.com",
    "X-Title": "KnowledgeGate",
}


class OpenRouterClient:
    """Async chat-completions client for one API key.

    Streaming is always disabled: the whole response is awaited at once.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize the client.

        Args:
            api_key: API key; read from OPENROUTER_API_KEY when omitted
            base_url: OpenAI-compatible endpoint
            timeout: Transport timeout in seconds

        Raises:
            ValueError: If no API key is available
        """
        api_key = api_key or os.getenv(API_KEY_ENV)
        if not api_key or not api_key.strip():
            raise ValueError(f"API key not found. Set {API_KEY_ENV} in the environment.")

        self.base_url = base_url
        self.timeout = timeout
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
            default_headers=DEFAULT_HEADERS,
        )

    async def complete(
        self,
        model_id: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
    ) -> UpstreamResponse:
        """Create a chat completion.

        Args:
            model_id: Upstream model identifier
            messages: Ordered message dictionaries (required)
            max_tokens: Completion-token cap; omitted when None

        Returns:
            UpstreamResponse with the first choice's text and usage

        Raises:
            ValueError: If messages is empty
            UpstreamError: On a non-success HTTP status
            UpstreamTimeout: If the transport timed out
            UpstreamFailure: If the endpoint could not be reached or the SDK
                rejected the response
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        params: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "stream": False,
        }
        if max_tokens:
            params["max_tokens"] = max_tokens

        try:
            response = await self.client.chat.completions.create(**params)
        except openai.APITimeoutError as e:
            raise UpstreamTimeout(model_id, self.timeout) from e
        except openai.APIStatusError as e:
            logger.error("Upstream %s returned %s", model_id, e.status_code)
            raise UpstreamError(e.status_code, e.response.text, model_id=model_id) from e
        except openai.APIConnectionError as e:
            raise UpstreamFailure(f"Could not reach upstream for {model_id}: {e}") from e
        except openai.APIError as e:
            raise UpstreamFailure(f"Upstream error from {model_id}: {e}") from e

        return UpstreamResponse(
            text=_extract_text(response),
            usage=TokenUsage.from_metering(getattr(response, "usage", None)),
            response_id=getattr(response, "id", None),
        )


def _extract_text(response) -> str:
    choices = getattr(response, "choices", None)
    if choices:
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if content:
            return content
    return ""
