"""Error taxonomy shared by the completion client and the services built on it."""

from typing import Any, List, Optional

import httpx


# Transport failures worth another attempt: connection resets, timeouts and name resolution.
RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


def is_retryable_status(status: Optional[int]) -> bool:
    if status is None:
        return False
    return status == 429 or 500 <= status <= 599


class MomentumError(Exception):
    """Base class for every failure raised by the core."""


class InvalidInput(MomentumError):
    pass


class RequestError(MomentumError):
    """A completion request could not produce a usable response."""


class InvalidEndpoint(RequestError):
    def __init__(self, url: str, detail: str = ""):
        self.url = url
        message = f"Invalid endpoint: {url}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TransportFailure(RequestError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Transport failure: {type(cause).__name__}: {cause}")


class RequestTimeout(RequestError):
    def __init__(self, timeout_s: Optional[float] = None):
        self.timeout_s = timeout_s
        detail = f" after {timeout_s:g}s" if timeout_s else ""
        super().__init__(f"Request timed out{detail}")


class RequestCancelled(RequestError):
    def __init__(self) -> None:
        super().__init__("Request cancelled")


class UpstreamError(RequestError):
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Upstream error: status {status}: {body[:500]}")

    @property
    def retryable(self) -> bool:
        return is_retryable_status(self.status)


class MalformedResponse(UpstreamError):
    """HTTP 200 whose body does not carry a usable completion."""


class ProvidersExhausted(RequestError):
    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        joined = "; ".join(str(err) for err in self.errors) or "no providers available"
        super().__init__(f"All AI providers failed: {joined}")


class DecodeFailure(MomentumError):
    """Structured output could not be decoded, even after repair."""

    def __init__(self, raw_response: str, cleaned_response: str, underlying: Any):
        self.raw_response = raw_response
        self.cleaned_response = cleaned_response
        self.underlying = underlying
        super().__init__(f"Failed to decode response: {underlying}")


class ConversationStateError(MomentumError):
    pass


class ResearchFailure(MomentumError):
    def __init__(self, query: str, cause: Optional[BaseException] = None, detail: str = ""):
        self.query = query
        self.cause = cause
        reason = detail or (str(cause) if cause else "unknown error")
        super().__init__(f"Research failed for {query!r}: {reason}")


class InvalidTransition(MomentumError):
    def __init__(self, item_id: str, current: str, target: str):
        self.item_id = item_id
        self.current = current
        self.target = target
        super().__init__(f"Work item {item_id}: illegal transition {current} -> {target}")
