import pytest

from momentum.errors import UpstreamError
from momentum.intent import IntentClassifier, normalize_intent
from tests.fakes import FakeCompletionBackend


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("researchRequest", "researchRequest"),
        ("  brainstorming\n", "brainstorming"),
        ('"statusUpdate".', "statusUpdate"),
        ("Intent: ResearchRequest", "researchRequest"),
        ("TASKHELP", "taskHelp"),
        ("foo", "taskHelp"),
        ("", "taskHelp"),
        (None, "taskHelp"),
        ("researchRequest because the user asked", "taskHelp"),
    ],
)
def test_normalize_intent(raw, expected):
    assert normalize_intent(raw) == expected


@pytest.mark.asyncio
async def test_unknown_intent_falls_back_to_task_help():
    backend = FakeCompletionBackend({"intent": "foo"})
    classifier = IntentClassifier(backend)
    assert await classifier.classify("hello", "Task: Write copy") == "taskHelp"


@pytest.mark.asyncio
async def test_classifier_request_shape():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    intent = await IntentClassifier(backend).classify("can you research pricing?", "Task: Pricing")
    assert intent == "researchRequest"
    request = backend.calls[0]["request"]
    assert request.temperature == 0.3
    assert request.max_tokens == 10
    assert request.model_tier == "fast"
    assert "can you research pricing?" in request.user_prompt


@pytest.mark.asyncio
async def test_upstream_errors_propagate():
    backend = FakeCompletionBackend({"intent": UpstreamError(500, "down")})
    with pytest.raises(UpstreamError):
        await IntentClassifier(backend).classify("hello")
