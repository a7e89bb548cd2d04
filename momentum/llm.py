import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import ProviderConfig, RetryConfig
from .errors import (
    RETRYABLE_TRANSPORT_ERRORS,
    InvalidEndpoint,
    InvalidInput,
    MalformedResponse,
    RequestCancelled,
    RequestError,
    RequestTimeout,
    TransportFailure,
    UpstreamError,
)
from .schemas import CompletionRequest, CompletionResult, TokenUsage


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Bounded retry schedule.

    Server errors (5xx/429) and transport errors each pick a curve:
    ``linear`` waits ``attempt * base`` (2s, 4s, 6s) and ``exponential`` waits
    ``base * 2 ** (attempt - 1)`` (2s, 4s, 8s). ``attempt`` counts retries from 1.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_s: float = 2.0,
        server_backoff: str = "linear",
        transport_backoff: str = "exponential",
    ):
        for curve in (server_backoff, transport_backoff):
            if curve not in ("linear", "exponential"):
                raise ValueError(f"unknown backoff curve: {curve}")
        self.max_retries = max(0, int(max_retries))
        self.base_delay_s = max(0.0, float(base_delay_s))
        self.server_backoff = server_backoff
        self.transport_backoff = transport_backoff

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay_s=config.base_delay_s,
            server_backoff=config.server_backoff,
            transport_backoff=config.transport_backoff,
        )

    def delay(self, kind: str, attempt: int) -> float:
        curve = self.server_backoff if kind == "server" else self.transport_backoff
        if curve == "exponential":
            return self.base_delay_s * (2 ** (attempt - 1))
        return self.base_delay_s * attempt


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


def _parse_usage(data: Dict[str, Any]) -> Optional[TokenUsage]:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    try:
        return TokenUsage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            total_tokens=int(usage.get("total_tokens") or 0),
        )
    except (TypeError, ValueError):
        return None


class CompletionClient:
    """Chat-completion client for one provider, with timeout and retry policy."""

    def __init__(
        self,
        provider: ProviderConfig,
        retry: Optional[RetryPolicy] = None,
        connect_timeout_s: float = 15.0,
        request_timeout_s: float = 30.0,
        sleep: Optional[Sleep] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = provider.name
        self.base_url = (provider.base_url or "").rstrip("/")
        self.model = provider.model_id
        self.api_key = provider.api_key
        self.retry = retry or RetryPolicy()
        self.request_timeout_s = request_timeout_s
        self._sleep: Sleep = sleep or asyncio.sleep
        # Requests to a provider share one pool; connect has its own budget inside the total deadline.
        self.client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_s, connect=connect_timeout_s),
            limits=httpx.Limits(max_connections=8, max_keepalive_connections=4),
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _check_endpoint(self) -> str:
        url = self.endpoint
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as exc:
            raise InvalidEndpoint(url, str(exc)) from exc
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidEndpoint(url)
        return url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _validate(self, request: CompletionRequest) -> None:
        if not request.user_prompt or not request.user_prompt.strip():
            raise InvalidInput("user prompt must not be empty")
        if request.max_tokens is not None and request.max_tokens <= 0:
            raise InvalidInput("max_tokens must be positive")
        if not 0.0 <= request.temperature <= 2.0:
            raise InvalidInput("temperature must be between 0 and 2")

    def build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if request.system_prompt and request.system_prompt.strip():
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_prompt})
        payload: Dict[str, Any] = {
            "model": request.model or self.model,
            "messages": messages,
            "temperature": request.temperature,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.require_structured_output:
            payload["response_format"] = {"type": "json_object"}
        if request.tools:
            payload["tools"] = [{"type": tool} for tool in request.tools]
        return payload

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return
        if cancel_event.is_set():
            raise RequestCancelled()
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RequestCancelled()

    def _parse_response(self, response: httpx.Response, model: str, attempts: int) -> CompletionResult:
        try:
            data = response.json()
        except ValueError:
            raise MalformedResponse(response.status_code, _response_text(response))
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedResponse(response.status_code, _response_text(response))
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise MalformedResponse(response.status_code, _response_text(response))
        logger.info("Completion from %s received (%d chars, attempt %d)", self.name, len(content), attempts)
        return CompletionResult(
            content=content,
            model=str(data.get("model") or model),
            usage=_parse_usage(data),
            attempts=attempts,
        )

    async def execute(
        self,
        request: CompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> CompletionResult:
        self._validate(request)
        url = self._check_endpoint()
        payload = self.build_payload(request)
        headers = self._headers()
        deadline = timeout_s or self.request_timeout_s
        retries = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled()
            attempt = retries + 1
            logger.info("Completion request to %s (attempt %d, model=%s)", self.name, attempt, payload["model"])
            failure: RequestError
            try:
                response = await asyncio.wait_for(
                    self.client.post(url, json=payload, headers=headers),
                    timeout=deadline,
                )
            except asyncio.TimeoutError as exc:
                failure = RequestTimeout(deadline)
                failure.__cause__ = exc
                kind = "transport"
            except RETRYABLE_TRANSPORT_ERRORS as exc:
                if isinstance(exc, httpx.TimeoutException):
                    failure = RequestTimeout(deadline)
                else:
                    failure = TransportFailure(exc)
                failure.__cause__ = exc
                kind = "transport"
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
                raise InvalidEndpoint(url, str(exc)) from exc
            except httpx.HTTPError as exc:
                raise TransportFailure(exc) from exc
            else:
                if response.status_code == 200:
                    return self._parse_response(response, payload["model"], attempt)
                failure = UpstreamError(response.status_code, _response_text(response))
                if not failure.retryable:
                    logger.warning("%s rejected request with status %d", self.name, response.status_code)
                    raise failure
                kind = "server"

            if retries >= self.retry.max_retries:
                logger.warning("%s request failed after %d attempts: %s", self.name, attempt, failure)
                raise failure
            retries += 1
            delay = self.retry.delay(kind, retries)
            logger.warning("%s %s error (%s), retrying in %.1fs", self.name, kind, failure, delay)
            await self._pause(delay, cancel_event)

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()
