"""Client for OpenAI-compatible chat-completion endpoints."""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx

from ..errors import InvalidRequestError, UpstreamError
from .base import VALID_ROLES, ChatMessage, ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 60000
DEFAULT_MAX_RETRIES = 3
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 30000

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"

ChunkCallback = Callable[[ChatResponse], None]


def backoff_delay(retry_number: int) -> float:
    """Seconds to wait before retry ``retry_number`` (1-based): 1, 2, 4, ... 30."""
    return min(BACKOFF_BASE_MS * 2 ** (retry_number - 1), BACKOFF_CAP_MS) / 1000


def should_retry(status_code: Optional[int]) -> bool:
    """Retry when nothing came back, on 429, and on any 5xx."""
    if status_code is None:
        return True
    return status_code >= 500 or status_code == 429


def extract_error_message(error: object) -> str:
    """Reduce a failure to something a person can read.

    Prefers the ``error.message`` the endpoint reported, then the exception
    text, then a generic fallback.
    """
    response = error if isinstance(error, httpx.Response) else getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        try:
            body = response.json()
        except (ValueError, httpx.ResponseNotRead):
            body = None
        if isinstance(body, dict):
            upstream = body.get("error")
            if isinstance(upstream, dict) and upstream.get("message"):
                return str(upstream["message"])
            if isinstance(upstream, str) and upstream:
                return upstream
        if error is response:
            return f"HTTP {response.status_code} {response.reason_phrase}".strip()

    if isinstance(error, BaseException) and str(error):
        return str(error)
    if isinstance(error, str) and error:
        return error
    return "Unknown error"


def validate_chat_request(request: object) -> list[str]:
    """Collect every problem with a request before it is sent.

    Returns:
        List of error messages; empty when the request is well formed
    """
    if not isinstance(request, ChatRequest):
        return ["Request is required and must be a ChatRequest"]

    errors = []
    if not isinstance(request.model, str) or not request.model.strip():
        errors.append("Model is required and must be a non-empty string")

    if not request.messages:
        errors.append("Messages are required and must be a non-empty list")
        return errors

    for i, message in enumerate(request.messages, 1):
        if not isinstance(message, ChatMessage):
            errors.append(f"Message {i}: must be a ChatMessage")
            continue
        if message.role not in VALID_ROLES:
            errors.append(
                f"Message {i}: role must be one of {', '.join(VALID_ROLES)}"
            )
        if not message.content:
            errors.append(f"Message {i}: content is required")

    return errors


class OpenAICompatibleClient:
    """Chat-completion client with retry and SSE streaming.

    Retry state lives in the loop of a single call; concurrent calls do not
    share attempt counters, and a backoff sleep only suspends its own call.
    """

    provider_name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Endpoint root, e.g. http://localhost:9292/v1
            api_key: Bearer credential sent on every request
            timeout_ms: Per-attempt timeout in milliseconds
            max_retries: Retries after the first attempt
            transport: Optional httpx transport (tests use MockTransport)
            sleep: Coroutine used for backoff delays
        """
        self.base_url = base_url
        self.max_retries = max_retries
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout_ms / 1000,
            transport=transport,
        )

    async def __aenter__(self) -> "OpenAICompatibleClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_models(self) -> list[dict]:
        """List models the endpoint serves.

        Returns:
            The ``data`` array of the /models response
        """
        try:
            response = await self._send("GET", "/models")
        except UpstreamError as e:
            raise UpstreamError(
                f"Failed to fetch models: {e}", e.status_code, e.attempts
            ) from e
        try:
            return response.json().get("data", [])
        except ValueError as e:
            raise UpstreamError(f"Failed to fetch models: invalid JSON ({e})") from e

    async def chat_completion(
        self,
        request: ChatRequest,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> ChatResponse:
        """Send a chat-completion request.

        Args:
            request: The request; ``request.stream`` selects SSE streaming
            on_chunk: Called synchronously with every streamed chunk, in order

        Returns:
            The endpoint's response. When streaming, the chunk that carried
            ``finish_reason == "stop"``, or an empty response if none did.

        Raises:
            InvalidRequestError: Request is malformed; nothing was sent
            UpstreamError: The endpoint failed after all attempts
        """
        errors = validate_chat_request(request)
        if errors:
            raise InvalidRequestError(f"Invalid chat request: {'; '.join(errors)}")

        headers = {"Accept": "text/event-stream"} if request.stream else None
        try:
            response = await self._send(
                "POST",
                "/chat/completions",
                body=request.to_dict(),
                headers=headers,
                stream=request.stream,
            )
        except UpstreamError as e:
            raise UpstreamError(
                f"Chat completion failed: {e}", e.status_code, e.attempts
            ) from e

        if request.stream:
            final = await self._read_stream(response, on_chunk)
            return final or self._empty_response(request.model)

        try:
            return ChatResponse.from_dict(response.json())
        except (ValueError, AttributeError, TypeError) as e:
            raise UpstreamError(
                f"Chat completion failed: invalid response body ({e})",
                response.status_code,
            ) from e

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        headers: Optional[dict] = None,
        stream: bool = False,
    ) -> httpx.Response:
        attempt = 0
        while True:
            attempt += 1
            request = self._client.build_request(method, path, json=body, headers=headers)
            last_error: Optional[Exception] = None
            try:
                response = await self._client.send(request, stream=stream)
            except httpx.TransportError as e:
                status_code = None
                message = extract_error_message(e) if str(e) else type(e).__name__
                last_error = e
            else:
                if response.is_success:
                    return response
                await response.aread()
                await response.aclose()
                status_code = response.status_code
                message = extract_error_message(response)

            if attempt > self.max_retries or not should_retry(status_code):
                raise UpstreamError(message, status_code, attempt) from last_error

            delay = backoff_delay(attempt)
            logger.warning(
                f"Retrying {method} {path} (attempt {attempt}/{self.max_retries}) "
                f"after {delay:.0f}s: {message}"
            )
            await self._sleep(delay)

    async def _read_stream(
        self,
        response: httpx.Response,
        on_chunk: Optional[ChunkCallback],
    ) -> Optional[ChatResponse]:
        """Consume an SSE body, never parsing a line before it is complete."""
        buffer = ""
        final: Optional[ChatResponse] = None

        def handle(line: str) -> None:
            nonlocal final
            chunk = self._parse_sse_line(line)
            if chunk is None:
                return
            if on_chunk is not None:
                on_chunk(chunk)
            if chunk.finish_reason == "stop":
                final = chunk

        try:
            async for text in response.aiter_text():
                buffer += text
                lines = buffer.split("\n")
                buffer = lines.pop()
                for line in lines:
                    handle(line)
            for line in buffer.split("\n"):
                handle(line)
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Chat completion failed: stream interrupted ({e})",
                response.status_code,
            ) from e
        finally:
            await response.aclose()

        return final

    @staticmethod
    def _parse_sse_line(line: str) -> Optional[ChatResponse]:
        line = line.rstrip("\r")
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        data = line[len(SSE_DATA_PREFIX):]
        if data == SSE_DONE:
            return None

        try:
            payload = json.loads(data)
        except ValueError as e:
            logger.warning(f"Failed to parse streaming chunk: {e}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring non-object streaming chunk: {data[:80]}")
            return None
        try:
            return ChatResponse.from_dict(payload)
        except (AttributeError, TypeError) as e:
            logger.warning(f"Ignoring malformed streaming chunk: {e}")
            return None

    @staticmethod
    def _empty_response(model: str) -> ChatResponse:
        return ChatResponse(
            id="",
            object="chat.completion",
            created=int(time.time()),
            model=model,
            choices=[],
        )
