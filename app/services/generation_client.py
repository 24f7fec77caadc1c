"""
Client for the external generative-text service (Gemini).

Two physical transports reach the same logical ``generateContent`` capability:

* ``GeminiSdkTransport``  – the google-genai SDK (structured client call)
* ``DirectHttpTransport`` – a direct REST call over httpx

Attempt 1 goes through the primary transport, later attempts through the
fallback ("direct wire") transport.  Every attempt is bounded by one overall
deadline, and attempts are separated by a fixed delay.

The two transports answer in different shapes.  They are modelled as a small
tagged union (``SdkShapedResponse | RawCandidateResponse``) and
``normalize_response`` turns either into one ``RawServiceResponse`` whose
envelope uses the REST (camelCase) field names.

Public API
----------
ExternalGenerationClient.generate(prompt) -> RawServiceResponse
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

import httpx
from google import genai
from google.genai import types

from app.config import settings
from app.services.errors import (
    GenerationPipelineError,
    GenerationTimeoutError,
    MalformedResponseError,
    PolicyBlockedError,
    TransportError,
)
from app.utils.helpers import truncate_text
from app.utils.retry import fixed_delays, retry_async

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response shapes
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class SdkShapedResponse:
    """SDK response object dumped to a dict (snake_case field names)."""

    response: Dict[str, Any]


@dataclasses.dataclass(frozen=True)
class RawCandidateResponse:
    """Decoded REST body: ``{"candidates": [...], "promptFeedback": {...}}``."""

    payload: Any


TransportResponse = Union[SdkShapedResponse, RawCandidateResponse]


@dataclasses.dataclass(frozen=True)
class RawServiceResponse:
    """Transport-independent envelope handed to the ResponseExtractor."""

    transport: str
    response: Optional[Dict[str, Any]]


_SNAKE_SEGMENT = re.compile(r"_([a-z0-9])")


def _camelize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), str(key)): _camelize_keys(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_camelize_keys(item) for item in value]
    return value


def normalize_response(shaped: TransportResponse, transport: str) -> RawServiceResponse:
    """Collapse either transport shape into a single camelCase envelope."""
    if isinstance(shaped, SdkShapedResponse):
        return RawServiceResponse(transport=transport, response=_camelize_keys(shaped.response))

    if isinstance(shaped, RawCandidateResponse):
        payload = shaped.payload
        if not isinstance(payload, dict):
            return RawServiceResponse(transport=transport, response=None)
        # Some gateways wrap the REST body in an SDK-style {"response": ...}.
        if isinstance(payload.get("response"), dict) and "candidates" not in payload:
            payload = payload["response"]
        return RawServiceResponse(transport=transport, response=payload)

    raise MalformedResponseError(f"Unknown response format from {transport}: {type(shaped).__name__}")


def _raise_if_prompt_blocked(response: RawServiceResponse) -> None:
    """A prompt-level refusal comes back with a block reason and no candidates."""
    envelope = response.response or {}
    feedback = envelope.get("promptFeedback") or {}
    block_reason = feedback.get("blockReason")
    if block_reason and not envelope.get("candidates"):
        raise PolicyBlockedError(f"Prompt blocked by the generation service ({block_reason})")


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class GenerationTransport(Protocol):
    name: str

    async def send(self, prompt: str) -> TransportResponse:
        ...


@dataclasses.dataclass(frozen=True)
class GenerationConfig:
    model: str = settings.GEMINI_MODEL
    temperature: float = settings.GEMINI_TEMPERATURE
    top_p: float = settings.GEMINI_TOP_P
    max_output_tokens: int = settings.GEMINI_MAX_OUTPUT_TOKENS


def _require_api_key(api_key: Optional[str]) -> str:
    if not api_key:
        raise TransportError("Generation service API key is not configured")
    return api_key


class GeminiSdkTransport:
    """Structured client call through the google-genai SDK."""

    name = "sdk"

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self._config = config or GenerationConfig()
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=_require_api_key(self._api_key))
        return self._client

    async def send(self, prompt: str) -> TransportResponse:
        client = self._get_client()
        # Use the async client to avoid blocking the asyncio event loop.
        response = await client.aio.models.generate_content(
            model=self._config.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=self._config.temperature,
                top_p=self._config.top_p,
                max_output_tokens=self._config.max_output_tokens,
            ),
        )
        return SdkShapedResponse(response=response.model_dump(mode="json", exclude_none=True))


class DirectHttpTransport:
    """Direct REST call to ``/v1beta/models/{model}:generateContent``."""

    name = "direct_http"

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self._config = config or GenerationConfig()
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        request_timeout = timeout if timeout is not None else settings.GENERATION_TIMEOUT_SECONDS
        self.timeout = httpx.Timeout(request_timeout, connect=10.0)
        self._http_transport = http_transport

    async def send(self, prompt: str) -> TransportResponse:
        api_key = _require_api_key(self._api_key)
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._config.temperature,
                "topP": self._config.top_p,
                "maxOutputTokens": self._config.max_output_tokens,
            },
        }
        url = f"{self.base_url}/v1beta/models/{self._config.model}:generateContent"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._http_transport
            ) as client:
                resp = await client.post(
                    url, json=body, headers={"x-goog-api-key": api_key}
                )
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(f"Direct HTTP call timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Direct HTTP call failed: {exc}") from exc

        if resp.status_code != 200:
            raise TransportError(f"HTTP {resp.status_code}: {truncate_text(resp.text, 300)}")

        try:
            return RawCandidateResponse(payload=resp.json())
        except ValueError as exc:
            raise TransportError(f"Failed to parse response: {exc}") from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ExternalGenerationClient:
    """
    Calls the generation service with transport fallback and fixed-delay retry.

    Never touches job state.  Raises ``TransportError`` /
    ``GenerationTimeoutError`` once the attempt budget is spent and
    ``PolicyBlockedError`` immediately (refusals are not transient).
    """

    TIMEOUT_SECONDS: float = float(settings.GENERATION_TIMEOUT_SECONDS)
    MAX_ATTEMPTS: int = settings.GENERATION_MAX_ATTEMPTS
    RETRY_DELAY_SECONDS: float = float(settings.GENERATION_RETRY_DELAY_SECONDS)

    def __init__(
        self,
        primary: Optional[GenerationTransport] = None,
        fallback: Optional[GenerationTransport] = None,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._primary = primary or GeminiSdkTransport()
        self._fallback = fallback or DirectHttpTransport()
        self._timeout = self.TIMEOUT_SECONDS if timeout is None else timeout
        self._max_attempts = self.MAX_ATTEMPTS if max_attempts is None else max_attempts
        self._retry_delay = self.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self._sleep = sleep

    async def generate(self, prompt: str) -> RawServiceResponse:
        async def _attempt(attempt: int) -> RawServiceResponse:
            transport = self._primary if attempt == 1 else self._fallback
            return await self._call(transport, prompt, attempt)

        return await retry_async(
            _attempt,
            delays=fixed_delays(self._retry_delay, self._max_attempts),
            label="generate",
            retry_on=(TransportError,),
            give_up_on=(PolicyBlockedError,),
            sleep=self._sleep,
        )

    async def _call(
        self, transport: GenerationTransport, prompt: str, attempt: int
    ) -> RawServiceResponse:
        logger.info(
            "generate: attempt %d/%d via %s (prompt %d chars)",
            attempt,
            self._max_attempts,
            transport.name,
            len(prompt),
        )
        try:
            shaped = await asyncio.wait_for(transport.send(prompt), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation call timed out after {self._timeout:.0f} seconds ({transport.name})"
            ) from exc
        except GenerationPipelineError:
            raise
        except Exception as exc:
            raise TransportError(f"{transport.name} transport failed: {exc}") from exc

        response = normalize_response(shaped, transport.name)
        _raise_if_prompt_blocked(response)
        return response
