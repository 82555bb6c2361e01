"""OpenRouter API client for consultation requests."""

import logging
import time
from typing import Any, Protocol

import httpx

from . import config
from .errors import ConsultationError
from .telemetry import get_tracer, is_telemetry_enabled, record_error

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    """Anything that turns a chat message list into a single text reply."""

    async def complete(self, messages: list[dict[str, str]]) -> str: ...


def _extract_content(data: dict[str, Any]) -> str:
    """Pull the assistant text out of a chat-completions response body.

    Raises:
        ConsultationError: If the body has no usable content.
    """
    try:
        content = data["choices"][0]["message"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise ConsultationError(f"Unexpected response format: {e}") from e
    if not content or not content.strip():
        raise ConsultationError("Empty answer in completion response")
    return content


class OpenRouterClient:
    """Chat-completions client for the OpenRouter API.

    Args:
        model: OpenRouter model identifier, e.g. "openai/gpt-4o-mini".
            Defaults to the configured mediator model, read on every call.
        timeout: Request timeout in seconds.
        http_client: Optional shared ``httpx.AsyncClient``. When omitted a
            client is created per request.
    """

    def __init__(
        self,
        model: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
    ):
        self._model = model
        self.timeout = timeout if timeout is not None else config.CONSULTATION_TIMEOUT
        self.api_key = api_key
        self.api_url = api_url or config.OPENROUTER_API_URL
        self._http_client = http_client

    @property
    def model(self) -> str:
        return self._model or config.MEDIATOR_MODEL

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """
        Send ``messages`` to the model and return the reply text.

        Args:
            messages: List of message dicts with 'role' and 'content'

        Returns:
            The assistant's reply

        Raises:
            ConsultationError: If the request fails or the reply is unusable
        """
        model = self.model
        tracer = get_tracer()
        span_attributes = {
            "llm.model": model,
            "llm.message_count": len(messages),
        }

        with tracer.start_as_current_span("llm.complete", attributes=span_attributes) as span:
            headers = {
                "Authorization": f"Bearer {self.api_key or config.OPENROUTER_API_KEY}",
                "Content-Type": "application/json",
            }
            payload = {
                "model": model,
                "messages": messages,
            }

            start_time = time.time()
            try:
                data = await self._post(headers, payload)
                content = _extract_content(data)
            except ConsultationError as e:
                logger.warning("Consultation with %s failed: %s", model, e)
                record_error(span, e)
                raise

            latency_ms = int((time.time() - start_time) * 1000)
            usage = data.get("usage", {}) or {}
            logger.debug(
                "Consultation with %s took %d ms (%s tokens)",
                model,
                latency_ms,
                usage.get("total_tokens", "?"),
            )

            if is_telemetry_enabled():
                span.set_attributes({
                    "llm.prompt_tokens": usage.get("prompt_tokens", 0),
                    "llm.completion_tokens": usage.get("completion_tokens", 0),
                    "llm.total_tokens": usage.get("total_tokens", 0),
                    "llm.latency_ms": latency_ms,
                })

            return content

    async def _post(self, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.api_url, headers=headers, json=payload, timeout=self.timeout
                )
                return self._decode(response)

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
                return self._decode(response)
        except httpx.HTTPError as e:
            raise ConsultationError(f"Request to {self.api_url} failed: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise ConsultationError(f"Response is not JSON: {e}") from e
