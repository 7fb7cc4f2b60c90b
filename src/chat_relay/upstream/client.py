"""HTTP client for the model provider's streaming chat-completions API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Raised when the model provider cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ModelProviderClient:
    """
    Streaming client for an OpenAI-compatible chat-completions endpoint.

    Each call sends a single user message with streaming enabled and hands
    back the raw response bytes. No retry is attempted: a failed turn is
    reported to the user, who may resend.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        model: str,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the provider client.

        Args:
            api_url: Full chat-completions URL
            api_key: Bearer key for the provider
            model: Model name sent with every request
            timeout: Request timeout configuration; the read timeout also
                bounds the wait for the first byte
            transport: Optional httpx transport (used by tests)
        """
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._timeout = timeout or httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=10.0)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        if not self._api_key:
            logger.warning("No model provider API key configured - requests will likely be rejected")

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def _build_payload(self, message: str) -> dict[str, Any]:
        # Stateless per turn: only the current user message is sent
        return {
            "model": self._model,
            "messages": [{"role": "user", "content": message}],
            "stream": True,
        }

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @asynccontextmanager
    async def stream_chat(self, message: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a streaming completion for one user message.

        Usage:
            async with client.stream_chat("hello") as chunks:
                async for data in chunks:
                    ...

        Leaving the block closes the upstream response, whether or not the
        body was fully read.

        Raises:
            UpstreamError: On a non-success status, transport error or timeout
        """
        client = await self._get_client()
        try:
            async with client.stream(
                "POST",
                self._api_url,
                json=self._build_payload(message),
                headers=self._build_headers(),
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise UpstreamError(
                        f"Model provider request failed: {response.status_code} "
                        f"{response.reason_phrase} - {body[:500]}",
                        status_code=response.status_code,
                    )

                logger.debug(
                    f"Provider responded {response.status_code} "
                    f"({response.headers.get('Content-Type')})"
                )
                yield response.aiter_bytes()

        except httpx.TimeoutException as e:
            raise UpstreamError(f"Model provider timed out: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Model provider connection error: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Model provider client closed")

    async def __aenter__(self) -> "ModelProviderClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
