import asyncio

import pytest

from momentum.db import Database, KnowledgeStore
from momentum.errors import DecodeFailure, RequestCancelled, ResearchFailure, UpstreamError
from momentum.research import ResearchPipeline
from momentum.schemas import GoalContext, QAPair, TaskContext, TaskEvaluation
from tests.fakes import FakeCompletionBackend


@pytest.fixture
async def store(tmp_path):
    path = str(tmp_path / "research.db")
    await Database(path).init()
    return KnowledgeStore(path)


@pytest.mark.asyncio
async def test_research_builds_and_persists_records(store):
    long_text = "Finding. " * 60
    backend = FakeCompletionBackend({"search": long_text})
    pipeline = ResearchPipeline(backend, search_model="search-model", search_timeout_s=60.0, store=store)
    clarifications = [QAPair(question="Which market?", answer="US")]

    record = await pipeline.research(
        "indie app pricing",
        goal_id="goal-1",
        task_context="Launch app",
        task_title="Pricing",
        task_id="task-1",
        clarifications=clarifications,
    )

    assert record.finding.query == "indie app pricing"
    assert record.finding.clarifying_qa == clarifications
    assert record.finding.was_auto_saved is True
    assert record.knowledge_entry.title == "Research: indie app pricing"
    assert record.knowledge_entry.tags == ["research", "auto-generated"]
    assert record.report.summary == long_text.strip()[:200]
    assert record.report.details == long_text.strip()
    assert pipeline.recent_results[0] is record
    assert not pipeline.is_researching

    call = backend.calls[0]
    assert call["request"].model == "search-model"
    assert call["request"].tools == ["browser_search"]
    assert call["request"].max_tokens == 1200
    assert call["timeout_s"] == 60.0
    assert "Only include information actually present" in call["request"].system_prompt

    assert await store.count_findings() == 1
    entries = await store.knowledge_for("goal-1")
    assert [e.id for e in entries] == [record.knowledge_entry.id]
    reports = await store.reports_for("goal-1")
    assert reports[0].task_id == "task-1"


@pytest.mark.asyncio
async def test_failed_search_creates_no_records(store):
    backend = FakeCompletionBackend({"search": UpstreamError(503, "down")})
    pipeline = ResearchPipeline(backend, store=store)

    with pytest.raises(ResearchFailure) as exc_info:
        await pipeline.research("pricing", goal_id="goal-1")

    assert isinstance(exc_info.value.cause, UpstreamError)
    assert list(pipeline.recent_results) == []
    assert await store.count_findings() == 0
    assert await store.knowledge_for("goal-1") == []


@pytest.mark.asyncio
async def test_empty_search_result_is_a_failure():
    pipeline = ResearchPipeline(FakeCompletionBackend({"search": "   "}))
    with pytest.raises(ResearchFailure):
        await pipeline.research("pricing", goal_id="goal-1")
    assert list(pipeline.recent_results) == []


@pytest.mark.asyncio
async def test_recent_results_keep_last_ten():
    pipeline = ResearchPipeline(FakeCompletionBackend())
    for n in range(12):
        await pipeline.research(f"query {n}", goal_id="goal-1")
    assert len(pipeline.recent_results) == 10
    assert pipeline.recent_results[0].query == "query 11"


@pytest.mark.asyncio
async def test_research_calls_are_serialized():
    backend = FakeCompletionBackend(delay_seconds=0.01)
    pipeline = ResearchPipeline(backend)
    await asyncio.gather(*(pipeline.research(f"q{n}", goal_id="g") for n in range(3)))
    assert backend.max_active == 1
    assert len(pipeline.recent_results) == 3


@pytest.mark.asyncio
async def test_clarify_returns_questions():
    pipeline = ResearchPipeline(FakeCompletionBackend())
    questions = await pipeline.clarify("pricing", "Launch app", "Pricing")
    assert len(questions) == 2


@pytest.mark.asyncio
async def test_clarify_rejects_unusable_output():
    pipeline = ResearchPipeline(FakeCompletionBackend({"clarify": "no idea"}))
    with pytest.raises(DecodeFailure):
        await pipeline.clarify("pricing")


@pytest.mark.asyncio
async def test_synthesis_forbids_fabrication():
    backend = FakeCompletionBackend()
    pipeline = ResearchPipeline(backend)
    text = await pipeline.synthesize("pricing", [], "raw results", "context")
    assert text == "Synthesized summary."
    request = backend.calls[0]["request"]
    assert "Do not hallucinate" in request.system_prompt
    assert "raw results" in request.user_prompt


@pytest.mark.asyncio
async def test_auto_research_only_for_ai_assisted_research_tasks():
    pipeline = ResearchPipeline(FakeCompletionBackend())
    goal = GoalContext(id="goal-1", vision_text="Launch an app", vision_refined="Launch a paid app by June")
    manual = TaskContext(title="Design logo", evaluation=TaskEvaluation(approach="userDirect"))
    assisted = TaskContext(
        title="Pricing",
        description="Compare competitor prices",
        evaluation=TaskEvaluation(approach="aiAssisted", skills_required=["research", "writing"]),
    )

    assert pipeline.should_auto_research(manual) is False
    assert await pipeline.auto_research(manual, goal) is None

    record = await pipeline.auto_research(assisted, goal)
    assert record.query == "Compare competitor prices"
    assert record.goal_id == "goal-1"
    assert record.task_id == assisted.id


@pytest.mark.asyncio
async def test_cancel_during_search_discards_result(store):
    pipeline = ResearchPipeline(FakeCompletionBackend(delay_seconds=0.05), store=store)
    cancel = asyncio.Event()

    task = asyncio.create_task(pipeline.research("pricing", goal_id="goal-1", cancel_event=cancel))
    await asyncio.sleep(0.01)
    cancel.set()

    with pytest.raises(RequestCancelled):
        await task
    assert list(pipeline.recent_results) == []
    assert await store.count_findings() == 0
