import logging
from typing import Dict, List, Optional

from .briefing import BriefingEngine
from .config import AppSettings, load_settings
from .db import Database, KnowledgeStore, WorkItemStore
from .intent import IntentClassifier
from .llm import CompletionClient, RetryPolicy
from .orchestrator import ConversationOrchestrator, MessageCallback
from .planning import PlanGenerator
from .research import ResearchPipeline
from .router import CompletionBackend, CompletionRouter
from .work_queue import WorkQueue


logger = logging.getLogger(__name__)


def build_clients(settings: AppSettings) -> Dict[str, CompletionClient]:
    retry = RetryPolicy.from_config(settings.retry)
    clients: Dict[str, CompletionClient] = {}
    for tier, provider in settings.providers().items():
        if not provider.enabled:
            logger.info("Skipping %s tier (%s): no api key", tier, provider.name)
            continue
        clients[tier] = CompletionClient(
            provider,
            retry=retry,
            connect_timeout_s=settings.connect_timeout_s,
            request_timeout_s=settings.request_timeout_s,
        )
    return clients


class Services:
    """Explicitly wired service graph; tests pass a fake backend instead of http clients."""

    def __init__(self, settings: AppSettings, backend: Optional[CompletionBackend] = None):
        self.settings = settings
        self.clients: List[CompletionClient] = []
        if backend is None:
            clients = build_clients(settings)
            self.clients = list(clients.values())
            backend = CompletionRouter(clients)
        self.backend = backend
        self.db = Database(settings.database_path)
        self.knowledge = KnowledgeStore(settings.database_path)
        self.work_items = WorkItemStore(settings.database_path)
        self.classifier = IntentClassifier(backend)
        self.research = ResearchPipeline(
            backend,
            search_model=settings.search_model,
            search_tool=settings.search_tool,
            search_timeout_s=settings.search_timeout_s,
            store=self.knowledge,
        )
        self.queue = WorkQueue(
            backend,
            store=self.work_items,
            default_tool_name=settings.default_tool_name,
            stale_after_s=settings.work_item_stale_after_s,
        )
        self.planner = PlanGenerator(backend)
        self.briefing = BriefingEngine(backend, staleness_s=settings.briefing_staleness_s)

    async def init(self) -> None:
        await self.db.init()
        loaded = await self.queue.load()
        requeued = await self.queue.recover_interrupted()
        logger.info("Services ready: %d work items loaded, %d requeued", loaded, len(requeued))

    def new_conversation(
        self,
        goal_id: Optional[str] = None,
        on_message: Optional[MessageCallback] = None,
    ) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            self.classifier,
            self.research,
            self.backend,
            goal_id=goal_id,
            on_message=on_message,
        )

    async def close(self) -> None:
        for client in self.clients:
            await client.close()


def create_services(settings: Optional[AppSettings] = None, backend: Optional[CompletionBackend] = None) -> Services:
    return Services(settings or load_settings(), backend=backend)
