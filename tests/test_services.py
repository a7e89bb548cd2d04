import sqlite3

import pytest

from momentum.config import ProviderConfig
from momentum.main import Services, build_clients, create_services
from momentum.router import CompletionRouter
from momentum.schemas import AIWorkItem, GoalContext, TaskContext
from tests.fakes import FakeCompletionBackend


@pytest.mark.asyncio
async def test_build_clients_skips_disabled_providers(settings):
    settings = settings.model_copy(
        update={"premium_provider": ProviderConfig(name="OpenAI", base_url="http://premium.test/v1", model_id="p")}
    )
    clients = build_clients(settings)
    for client in clients.values():
        await client.close()
    assert sorted(clients) == ["fast", "standard"]
    assert clients["fast"].model == "fast-model"


@pytest.mark.asyncio
async def test_services_without_backend_use_router(settings):
    services = Services(settings)
    assert isinstance(services.backend, CompletionRouter)
    assert services.backend.available_tiers() == ["fast", "standard", "premium"]
    assert len(services.clients) == 3
    await services.close()
    await services.close()


@pytest.mark.asyncio
async def test_init_creates_tables(services, settings):
    conn = sqlite3.connect(settings.database_path)
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert "work_items" in tables
    assert "knowledge_entries" in tables


@pytest.mark.asyncio
async def test_conversation_research_round_trip(services, fake_backend):
    fake_backend.responses["intent"] = "researchRequest"
    seen = []
    conversation = services.new_conversation(goal_id="goal-1", on_message=seen.append)
    task = TaskContext(goal_id="goal-1", title="Pricing")

    await conversation.submit("What do competitors charge?", task)
    assert conversation.state == "awaitingClarification"
    await conversation.provide_answers(["US", "Under $10"], task)

    assert conversation.state == "idle"
    assert seen[-1].metadata.message_type == "researchResult"
    entries = await services.knowledge.knowledge_for("goal-1")
    assert len(entries) == 1
    assert services.research.recent_results[0].query == "What do competitors charge?"


@pytest.mark.asyncio
async def test_init_requeues_interrupted_work(settings):
    first = create_services(settings, backend=FakeCompletionBackend())
    await first.init()
    stuck = AIWorkItem(goal_id="goal-1", type="research", title="Pricing", status="inProgress")
    await first.work_items.save(stuck.model_copy(update={"started_at": stuck.created_at.replace(year=2020)}))
    await first.close()

    backend = FakeCompletionBackend()
    second = create_services(settings, backend=backend)
    await second.init()
    try:
        assert second.queue.status(stuck.id) == "failed"
        pending = [item for item in second.queue.items_for("goal-1") if item.status == "pending"]
        assert [item.title for item in pending] == ["Pricing"]

        await second.queue.process_pending(GoalContext(id="goal-1", vision_text="Launch an app"))
        assert second.queue.status(pending[0].id) == "completed"
    finally:
        await second.close()
