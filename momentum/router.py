"""Routes completion requests to a provider by cost tier, falling back across tiers."""

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional, Protocol

from .errors import ProvidersExhausted, RequestCancelled, RequestError
from .schemas import TIER_ORDER, CompletionRequest, CompletionResult


logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    def execute(
        self,
        request: CompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> Awaitable[CompletionResult]:
        ...


class CompletionRouter:
    def __init__(self, backends: Optional[Dict[str, CompletionBackend]] = None):
        self.backends: Dict[str, CompletionBackend] = {}
        for tier, backend in (backends or {}).items():
            self.register(tier, backend)

    def register(self, tier: str, backend: CompletionBackend) -> None:
        if tier not in TIER_ORDER:
            raise ValueError(f"unknown tier: {tier}")
        self.backends[tier] = backend
        logger.info("Registered %s for %s tier", getattr(backend, "name", type(backend).__name__), tier)

    def available_tiers(self) -> List[str]:
        return [tier for tier in TIER_ORDER if tier in self.backends]

    def fallback_chain(self, preferred: str) -> List[str]:
        chain = [preferred]
        chain.extend(tier for tier in TIER_ORDER if tier != preferred)
        return chain

    async def execute(
        self,
        request: CompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> CompletionResult:
        errors: List[RequestError] = []
        tried = set()
        # A pinned model only exists on its own provider.
        chain = [request.model_tier] if request.model else self.fallback_chain(request.model_tier)
        for tier in chain:
            backend = self.backends.get(tier)
            # Standard and premium may share one provider instance.
            if backend is None or id(backend) in tried:
                continue
            tried.add(id(backend))
            try:
                return await backend.execute(request, cancel_event=cancel_event, timeout_s=timeout_s)
            except RequestCancelled:
                raise
            except RequestError as exc:
                logger.warning("%s tier failed: %s", tier, exc)
                errors.append(exc)
        if len(errors) == 1:
            raise errors[0]
        raise ProvidersExhausted(errors)
