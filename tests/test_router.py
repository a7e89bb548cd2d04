import pytest

from momentum.errors import InvalidInput, ProvidersExhausted, RequestCancelled, UpstreamError
from momentum.router import CompletionRouter
from momentum.schemas import CompletionRequest, CompletionResult


class StubBackend:
    def __init__(self, name, error=None):
        self.name = name
        self.error = error
        self.calls = 0

    async def execute(self, request, cancel_event=None, timeout_s=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return CompletionResult(content=f"from {self.name}", model=self.name)


def request(**overrides):
    data = {"system_prompt": "sys", "user_prompt": "hi"}
    data.update(overrides)
    return CompletionRequest(**data)


@pytest.mark.asyncio
async def test_preferred_tier_is_used_first():
    fast, standard = StubBackend("fast"), StubBackend("standard")
    router = CompletionRouter({"fast": fast, "standard": standard})
    result = await router.execute(request(model_tier="standard"))
    assert result.content == "from standard"
    assert fast.calls == 0


@pytest.mark.asyncio
async def test_falls_back_on_request_error():
    fast = StubBackend("fast", error=UpstreamError(503, "down"))
    standard = StubBackend("standard")
    router = CompletionRouter({"fast": fast, "standard": standard})
    result = await router.execute(request())
    assert result.content == "from standard"
    assert fast.calls == 1


@pytest.mark.asyncio
async def test_single_provider_error_is_reraised_unchanged():
    error = UpstreamError(401, "bad key")
    router = CompletionRouter({"fast": StubBackend("fast", error=error)})
    with pytest.raises(UpstreamError) as exc_info:
        await router.execute(request())
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_all_providers_failing_raises_exhausted():
    router = CompletionRouter(
        {
            "fast": StubBackend("fast", error=UpstreamError(500, "a")),
            "premium": StubBackend("premium", error=UpstreamError(502, "b")),
        }
    )
    with pytest.raises(ProvidersExhausted) as exc_info:
        await router.execute(request())
    assert [err.status for err in exc_info.value.errors] == [500, 502]


@pytest.mark.asyncio
async def test_no_backends_raises_exhausted():
    with pytest.raises(ProvidersExhausted):
        await CompletionRouter().execute(request())


@pytest.mark.asyncio
async def test_pinned_model_does_not_fall_back():
    fast = StubBackend("fast", error=UpstreamError(503, "down"))
    standard = StubBackend("standard")
    router = CompletionRouter({"fast": fast, "standard": standard})
    with pytest.raises(UpstreamError):
        await router.execute(request(model="openai/gpt-oss-120b"))
    assert standard.calls == 0


@pytest.mark.asyncio
async def test_cancellation_and_invalid_input_do_not_fall_back():
    standard = StubBackend("standard")
    for error in (RequestCancelled(), InvalidInput("empty")):
        router = CompletionRouter({"fast": StubBackend("fast", error=error), "standard": standard})
        with pytest.raises(type(error)):
            await router.execute(request())
    assert standard.calls == 0


def test_shared_backend_is_tried_once_and_tiers_are_ordered():
    shared = StubBackend("openai")
    router = CompletionRouter({"premium": shared, "standard": shared})
    assert router.available_tiers() == ["standard", "premium"]
    assert router.fallback_chain("premium") == ["premium", "fast", "standard"]
    with pytest.raises(ValueError):
        router.register("ultra", shared)
