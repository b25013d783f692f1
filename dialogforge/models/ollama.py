"""OllamaClient: request executor for a local Ollama instance.

Talks to the Ollama REST API over ``httpx``::

    async with OllamaClient("http://localhost:11434", "llama3.2:latest") as client:
        text = await client.generate("Say hello.", GenerationOptions(temperature=0.8))

Each attempt is admitted through a :class:`ConcurrencyLimiter`, bounded by a
timeout, and classified into an :class:`ErrorKind`. Timeouts, network
failures and HTTP 503 are retried with exponential backoff; everything else
is terminal for the call.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from dialogforge.limiter import ConcurrencyLimiter
from dialogforge.protocols import ConfigurationError, ErrorKind, RequestError
from dialogforge.text import clean_generated_text

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling and transport options for one generate call."""

    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_tokens: int = 256
    timeout_ms: Optional[int] = None  # None uses the client's configured timeout
    retries: int = 1
    retry_delay_ms: int = 300

    def replace(self, **changes: Any) -> "GenerationOptions":
        return dataclasses.replace(self, **changes)

    def sampling(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "max_tokens": self.max_tokens,
        }


class OllamaClient:
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2:latest",
        *,
        limiter: Optional[ConcurrencyLimiter] = None,
        request_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._model = model
        self._request_timeout_ms = request_timeout_ms
        self.limiter = limiter or ConcurrencyLimiter()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._sleep = sleep
        self.last_request_at: float = 0.0
        self.is_available = False

    # ---- Configuration ----

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def model(self) -> str:
        return self._model

    def configure(
        self,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        request_timeout_ms: Optional[int] = None,
    ) -> None:
        if base_url is not None:
            self._base_url = base_url.rstrip("/")
        if model is not None:
            self._model = model
        if request_timeout_ms is not None:
            self._request_timeout_ms = request_timeout_ms

    def _check_configured(self) -> None:
        if not self._base_url or not self._model:
            logger.error(
                "Invalid Ollama configuration: base_url=%r, model=%r", self._base_url, self._model
            )
            raise ConfigurationError("Ollama service not properly configured")

    # ---- Generate ----

    async def generate(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        key: Optional[str] = None,
    ) -> str:
        """Return cleaned generated text or raise :class:`RequestError`."""
        options = options or GenerationOptions()
        self._check_configured()

        timeout_ms = options.timeout_ms or self._request_timeout_ms
        payload = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": options.sampling(),
        }
        logger.debug(
            "Ollama request: %d chars, temp=%s top_p=%s top_k=%s",
            len(prompt),
            options.temperature,
            options.top_p,
            options.top_k,
        )
        self.last_request_at = time.monotonic()

        attempt = 0
        while True:
            try:
                raw = await self.limiter.execute(
                    lambda: self._post_generate(payload, timeout_ms), key
                )
                return clean_generated_text(raw)
            except RequestError as e:
                if not e.kind.retryable or attempt >= options.retries:
                    raise
                delay_ms = options.retry_delay_ms * 2**attempt
                logger.warning(
                    "Ollama attempt %d failed (%s: %s), retrying in %dms",
                    attempt + 1,
                    e.kind.value,
                    e,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1

    async def _post_generate(self, payload: dict[str, Any], timeout_ms: int) -> str:
        url = f"{self._base_url}/api/generate"
        try:
            resp = await asyncio.wait_for(
                self._client.post(url, json=payload, timeout=timeout_ms / 1000),
                timeout=timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RequestError(
                ErrorKind.TIMEOUT, f"Connection timed out after {timeout_ms}ms"
            ) from exc
        except httpx.TransportError as exc:
            raise RequestError(
                ErrorKind.NETWORK, f"Ollama server might not be running at {self._base_url}: {exc}"
            ) from exc
        except httpx.RequestError as exc:
            # Undecodable bodies and redirect loops are malformed responses
            raise RequestError(ErrorKind.API, f"Invalid API response: {exc}") from exc

        if resp.status_code == 503:
            raise RequestError(
                ErrorKind.SERVICE_UNAVAILABLE, f"Ollama returned HTTP 503: {resp.text}"
            )
        if not resp.is_success:
            raise RequestError(ErrorKind.API, f"{resp.status_code} - {resp.text}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise RequestError(ErrorKind.API, f"Malformed JSON from Ollama: {exc}") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not text or not isinstance(text, str):
            raise RequestError(ErrorKind.API, f"Invalid API response: {data!r}")
        self.is_available = True
        return text

    # ---- Models ----

    async def list_models(self) -> List[str]:
        """Names of locally available models; empty when the backend is unreachable."""
        url = f"{self._base_url}/api/tags"
        try:
            resp = await self.limiter.execute(
                lambda: self._client.get(url, timeout=self._request_timeout_ms / 1000)
            )
        except httpx.HTTPError as e:
            logger.error("Error fetching models from Ollama: %s", e)
            self.is_available = False
            return []

        if not resp.is_success:
            logger.error("Failed to fetch models from Ollama: HTTP %d", resp.status_code)
            return []

        self.is_available = True
        try:
            models = resp.json().get("models")
        except ValueError:
            logger.error("Malformed model list from Ollama")
            return []
        if not isinstance(models, list):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and "name" in m]

    # ---- Lifecycle ----

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
