"""
Async completion client for the assistant's language model.

- Plain HTTP (httpx) against an OpenAI-compatible /chat/completions API
  (OpenRouter by default); no provider SDK
- Every call is dispatched through the shared RequestSerializer and guarded
  by a circuit breaker, so an unhealthy provider fails fast instead of
  growing the queue
- Two modes: ``complete`` returns the full assistant text; ``stream``
  forwards incremental text deltas to a callback and returns the
  concatenated text

Failures surface as CompletionError (LLMConfigurationError when the API key
is missing); callers decide how to degrade.
"""
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from encyclopedia_ai.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from encyclopedia_ai.core.config import Settings
from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.core.metrics import record_llm_request, record_llm_tokens
from encyclopedia_ai.services.ai.errors import CompletionError, LLMConfigurationError
from encyclopedia_ai.services.ai.request_queue import RequestSerializer
from encyclopedia_ai.services.ai.schema import Message

logger = get_logger(__name__)

STREAM_DONE_SENTINEL = "[DONE]"


def is_completion_shape(data: Any) -> bool:
    """True for an object with a ``choices`` list whose first entry holds a message object."""
    if not isinstance(data, dict) or not isinstance(data.get("choices"), list):
        return False
    choices = data["choices"]
    if not choices:
        return True
    return isinstance(choices[0], dict) and isinstance(choices[0].get("message", {}), dict)


def extract_message_content(data: Any) -> str:
    """Assistant text of a non-streaming response, or "" if absent."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


def extract_usage(data: Any) -> Tuple[int, int]:
    """(prompt_tokens, completion_tokens); missing or malformed counts are 0."""
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return 0, 0

    def count(key: str) -> int:
        try:
            return max(0, int(usage.get(key) or 0))
        except (TypeError, ValueError, OverflowError):
            return 0

    return count("prompt_tokens"), count("completion_tokens")


def parse_stream_line(line: str) -> Tuple[bool, Optional[str]]:
    """
    Decode one line of the provider's SSE stream.

    Returns:
        (done, delta): ``done`` is True at the terminating sentinel; ``delta``
        is the text fragment carried by the record, if any. Comments,
        keep-alives and unparseable records yield (False, None).

    Raises:
        CompletionError if the provider reports an error inside the stream.
    """
    if not line.startswith("data:"):
        return False, None
    raw = line[len("data:"):].strip()
    if not raw:
        return False, None
    if raw == STREAM_DONE_SENTINEL:
        return True, None

    try:
        record = json.loads(raw)
    except ValueError:
        logger.warning("llm_stream_chunk_unparseable", raw=raw[:200])
        return False, None

    if not isinstance(record, dict):
        return False, None
    if record.get("error"):
        error = record["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise CompletionError(f"provider error mid-stream: {message}")

    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return False, None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return False, None
    content = delta.get("content")
    return False, content if isinstance(content, str) and content else None


class CompletionClient:
    """Async HTTP client for the assistant's completions."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        serializer: RequestSerializer,
        timeout_seconds: float = 60.0,
        referer: Optional[str] = None,
        title: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.serializer = serializer
        self.timeout_seconds = timeout_seconds
        self.referer = referer
        self.title = title
        self._transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="llm_upstream",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        serializer: RequestSerializer,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CompletionClient":
        return cls(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.model,
            serializer=serializer,
            timeout_seconds=settings.llm_timeout_seconds,
            referer=settings.app_public_url,
            title=settings.app_title,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        # Attribution headers understood by OpenRouter
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        return headers

    def _payload(
        self,
        messages: List[Message],
        max_tokens: int,
        temperature: float,
        stream: bool,
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def _dispatch(self, kind: str, work: Callable[[], Any]) -> Any:
        if not self.api_key:
            record_llm_request(kind, "not_configured", 0.0)
            raise LLMConfigurationError("LLM API key not configured")
        try:
            return await self.circuit_breaker.call_async(self.serializer.submit, work)
        except CircuitBreakerOpenError as exc:
            record_llm_request(kind, "circuit_open", 0.0)
            logger.warning("llm_circuit_open", kind=kind)
            raise CompletionError(str(exc)) from exc

    @staticmethod
    def _raise_for_status(kind: str, status_code: int, body: str, started: float) -> None:
        record_llm_request(kind, "http_error", time.monotonic() - started)
        logger.error(
            "llm_http_error",
            kind=kind,
            status_code=status_code,
            body=body[:1000],
        )
        raise CompletionError(f"provider returned {status_code}: {body[:300]}", status_code=status_code)

    async def complete(
        self,
        messages: List[Message],
        max_tokens: int = 900,
        temperature: float = 0.6,
    ) -> str:
        """
        Blocking completion: the whole assistant text in one response.

        Raises:
            LLMConfigurationError: no API key.
            CompletionError: network failure, non-2xx status, unparseable body.
        """
        payload = self._payload(messages, max_tokens, temperature, stream=False)
        url = f"{self.api_base}/chat/completions"

        async def work() -> str:
            started = time.monotonic()
            try:
                async with self._http_client() as client:
                    response = await client.post(url, headers=self._headers(), json=payload)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                record_llm_request("complete", "network_error", time.monotonic() - started)
                logger.warning(
                    "llm_network_error",
                    kind="complete",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise CompletionError(f"network error: {exc}") from exc

            if response.status_code >= 400:
                self._raise_for_status("complete", response.status_code, response.text, started)

            try:
                data = response.json()
            except ValueError as exc:
                record_llm_request("complete", "parse_error", time.monotonic() - started)
                logger.error("llm_response_unparseable", error=str(exc))
                raise CompletionError(f"unparseable response: {exc}") from exc

            if not is_completion_shape(data):
                record_llm_request("complete", "parse_error", time.monotonic() - started)
                logger.error("llm_response_unparseable", response=str(data)[:500])
                raise CompletionError("unparseable response: unexpected shape")

            record_llm_request("complete", "ok", time.monotonic() - started)
            record_llm_tokens(*extract_usage(data))

            content = extract_message_content(data)
            if not content:
                logger.warning("llm_empty_content", response=json.dumps(data, default=str)[:500])
            return content

        return await self._dispatch("complete", work)

    async def stream(
        self,
        messages: List[Message],
        on_token: Callable[[str], None],
        max_tokens: int = 1500,
        temperature: float = 0.65,
    ) -> str:
        """
        Streaming completion: ``on_token`` receives each text delta as it
        arrives; the full text is returned once the sentinel is reached.

        A failure after some deltas were delivered still raises; tokens
        already passed to ``on_token`` stay delivered.
        """
        payload = self._payload(messages, max_tokens, temperature, stream=True)
        url = f"{self.api_base}/chat/completions"

        async def work() -> str:
            started = time.monotonic()
            parts: List[str] = []
            try:
                async with self._http_client() as client:
                    async with client.stream("POST", url, headers=self._headers(), json=payload) as response:
                        if response.status_code >= 400:
                            body = (await response.aread()).decode("utf-8", errors="replace")
                            self._raise_for_status("stream", response.status_code, body, started)

                        async for line in response.aiter_lines():
                            done, delta = parse_stream_line(line)
                            if done:
                                break
                            if delta:
                                parts.append(delta)
                                on_token(delta)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                record_llm_request("stream", "network_error", time.monotonic() - started)
                logger.error(
                    "llm_stream_read_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    chunks_received=len(parts),
                )
                raise CompletionError(f"stream error: {exc}") from exc
            except CompletionError as exc:
                if exc.status_code is None:
                    # Status failures were already recorded by _raise_for_status
                    record_llm_request("stream", "provider_error", time.monotonic() - started)
                    logger.error("llm_stream_provider_error", error=str(exc), chunks_received=len(parts))
                raise

            record_llm_request("stream", "ok", time.monotonic() - started)
            if not parts:
                logger.warning("llm_stream_empty")
            return "".join(parts)

        return await self._dispatch("stream", work)
