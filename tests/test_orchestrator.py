import json
from datetime import timedelta

import pytest

from momentum.errors import ConversationStateError, DecodeFailure, InvalidInput, RequestCancelled, UpstreamError
from momentum.intent import IntentClassifier
from momentum.orchestrator import ConversationOrchestrator, build_task_context
from momentum.research import ResearchPipeline
from momentum.schemas import BrainstormNote, ResearchFinding, TaskContext, TaskEvaluation, utc_now
from tests.fakes import FakeCompletionBackend


def make_task(**overrides):
    data = {"id": "task-1", "goal_id": "goal-1", "title": "Set app pricing", "description": "Pick a price"}
    data.update(overrides)
    return TaskContext(**data)


def make_orchestrator(backend, **kwargs):
    return ConversationOrchestrator(
        IntentClassifier(backend),
        ResearchPipeline(backend),
        backend,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_research_request_asks_for_clarification():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    orchestrator = make_orchestrator(backend)

    update = await orchestrator.submit("can you research pricing for my app?", make_task())

    assert update.requires_clarification is True
    assert 2 <= len(update.clarifying_questions) <= 5
    assert all(q.strip() for q in update.clarifying_questions)
    tagged = [
        m for m in orchestrator.messages if m.metadata and m.metadata.message_type == "clarifyingQuestion"
    ]
    assert len(tagged) == 1
    assert tagged[0].role == "system"
    assert orchestrator.state == "awaitingClarification"
    assert backend.count("search") == 0


@pytest.mark.asyncio
async def test_questions_are_clipped_to_five():
    questions = [f"Question {n}?" for n in range(8)]
    backend = FakeCompletionBackend(
        {"intent": "researchRequest", "clarify": json.dumps({"questions": questions})}
    )
    update = await make_orchestrator(backend).submit("research competitors", make_task())
    assert update.clarifying_questions == questions[:5]


@pytest.mark.asyncio
async def test_too_few_questions_is_a_decode_failure():
    backend = FakeCompletionBackend({"intent": "researchRequest", "clarify": '{"questions": ["Only one?", " "]}'})
    orchestrator = make_orchestrator(backend)
    with pytest.raises(DecodeFailure):
        await orchestrator.submit("research competitors", make_task())
    assert orchestrator.state == "idle"
    assert isinstance(orchestrator.last_error, DecodeFailure)


@pytest.mark.asyncio
async def test_answers_run_research_and_return_to_idle():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    messages = []
    orchestrator = make_orchestrator(backend, on_message=messages.append)
    await orchestrator.submit("can you research pricing for my app?", make_task())

    update = await orchestrator.provide_answers(["US indie devs", "$5-$10"], make_task())

    finding = update.research_finding
    assert finding is not None
    assert finding.query == "can you research pricing for my app?"
    assert [pair.answer for pair in finding.clarifying_qa] == ["US indie devs", "$5-$10"]
    result_message = orchestrator.messages[-1]
    assert result_message.role == "assistant"
    assert result_message.metadata.message_type == "researchResult"
    assert result_message.metadata.related_research_id == finding.id
    assert orchestrator.state == "idle"
    assert orchestrator.clarifying_questions == []
    assert backend.count("search") == 1
    assert [m.id for m in messages] == [m.id for m in orchestrator.messages]

    search_request = [c for c in backend.calls if c["kind"] == "search"][0]
    assert "US indie devs" in search_request["request"].user_prompt


@pytest.mark.asyncio
async def test_submit_while_awaiting_clarification_is_rejected():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    orchestrator = make_orchestrator(backend)
    await orchestrator.submit("research pricing", make_task())
    with pytest.raises(ConversationStateError):
        await orchestrator.submit("another question", make_task())
    assert backend.count("search") == 0


@pytest.mark.asyncio
async def test_answers_without_pending_request_are_rejected():
    orchestrator = make_orchestrator(FakeCompletionBackend())
    with pytest.raises(ConversationStateError):
        await orchestrator.provide_answers(["a", "b"], make_task())


@pytest.mark.asyncio
async def test_answer_count_must_match_questions():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    orchestrator = make_orchestrator(backend)
    await orchestrator.submit("research pricing", make_task())
    with pytest.raises(InvalidInput):
        await orchestrator.provide_answers(["only one"], make_task())
    assert orchestrator.state == "awaitingClarification"
    assert backend.count("search") == 0


@pytest.mark.asyncio
async def test_reset_discards_pending_research():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    orchestrator = make_orchestrator(backend)
    first_id = orchestrator.conversation_id
    await orchestrator.submit("research pricing", make_task())

    orchestrator.reset()

    assert orchestrator.state == "idle"
    assert orchestrator.messages == []
    assert orchestrator.pending_query is None
    assert orchestrator.conversation_id != first_id
    with pytest.raises(ConversationStateError):
        await orchestrator.provide_answers(["a", "b"], make_task())
    assert backend.count("search") == 0


@pytest.mark.asyncio
async def test_other_intents_get_task_help():
    backend = FakeCompletionBackend({"intent": "brainstorming", "task_help": "Try three price tiers."})
    orchestrator = make_orchestrator(backend)
    update = await orchestrator.submit("what could I charge?", make_task())

    assert update.requires_clarification is False
    assert [m.role for m in update.new_messages] == ["user", "assistant"]
    assert update.new_messages[1].content == "Try three price tiers."
    assert update.new_messages[1].metadata.message_type == "generalHelp"
    assert orchestrator.state == "idle"


@pytest.mark.asyncio
async def test_research_failure_returns_to_idle_without_result_message():
    backend = FakeCompletionBackend({"intent": "researchRequest", "search": UpstreamError(500, "down")})
    orchestrator = make_orchestrator(backend)
    await orchestrator.submit("research pricing", make_task())
    count = len(orchestrator.messages)

    with pytest.raises(Exception) as exc_info:
        await orchestrator.provide_answers(["a", "b"], make_task())

    assert not isinstance(exc_info.value, RequestCancelled)
    assert orchestrator.state == "idle"
    assert orchestrator.last_error is exc_info.value
    assert len(orchestrator.messages) == count


@pytest.mark.asyncio
async def test_task_without_goal_cannot_be_researched():
    backend = FakeCompletionBackend({"intent": "researchRequest"})
    orchestrator = make_orchestrator(backend)
    task = make_task(goal_id=None)
    await orchestrator.submit("research pricing", task)
    with pytest.raises(InvalidInput):
        await orchestrator.provide_answers(["a", "b"], task)


def test_build_task_context_includes_recent_research_and_brainstorms():
    now = utc_now()
    findings = [
        ResearchFinding(query=f"q{n}", search_results="x" * 300, timestamp=now - timedelta(days=n))
        for n in range(5)
    ]
    task = make_task(
        research_findings=findings,
        brainstorms=[BrainstormNote(content="Freemium?")],
        evaluation=TaskEvaluation(approach="aiAssisted"),
        estimated_minutes=45,
    )
    context = build_task_context(task)
    assert "Task: Set app pricing" in context
    assert "Approach: aiAssisted" in context
    assert "Estimated Time: 45 minutes" in context
    assert "- q0: " + "x" * 200 + "..." in context
    assert "q3" not in context
    assert "- Freemium?" in context
