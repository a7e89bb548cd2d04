import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Sequence

import aiosqlite
from pydantic import BaseModel, Field

from .db import KnowledgeStore
from .errors import DecodeFailure, MomentumError, RequestCancelled, ResearchFailure
from .prompts import browser_search_prompt, clarification_prompt, synthesis_prompt
from .repair import decode
from .router import CompletionBackend
from .schemas import (
    AIReport,
    CompletionRequest,
    GoalContext,
    KnowledgeBaseEntry,
    QAPair,
    ResearchFinding,
    TaskContext,
    new_id,
    utc_now,
)


logger = logging.getLogger(__name__)

MIN_QUESTIONS = 2
MAX_QUESTIONS = 5
SUMMARY_CHARS = 200


class ClarifyingQuestions(BaseModel):
    questions: List[str] = Field(default_factory=list)


class ResearchRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    task_id: Optional[str] = None
    finding: ResearchFinding
    knowledge_entry: KnowledgeBaseEntry
    report: AIReport
    completed_at: datetime = Field(default_factory=utc_now)

    @property
    def query(self) -> str:
        return self.finding.query

    @property
    def synthesized_result(self) -> str:
        return self.finding.search_results


def clip_questions(questions: Sequence[str], raw: str = "") -> List[str]:
    cleaned = [q.strip() for q in questions if isinstance(q, str) and q.strip()]
    if len(cleaned) < MIN_QUESTIONS:
        raise DecodeFailure(raw, raw, f"expected at least {MIN_QUESTIONS} questions, got {len(cleaned)}")
    return cleaned[:MAX_QUESTIONS]


class ResearchPipeline:
    """Search-augmented research: one tool-enabled completion, then durable records."""

    def __init__(
        self,
        backend: CompletionBackend,
        search_model: str = "openai/gpt-oss-120b",
        search_tool: str = "browser_search",
        search_timeout_s: float = 60.0,
        store: Optional[KnowledgeStore] = None,
        max_recent: int = 10,
    ):
        self.backend = backend
        self.search_model = search_model
        self.search_tool = search_tool
        self.search_timeout_s = search_timeout_s
        self.store = store
        self.recent_results: Deque[ResearchRecord] = deque(maxlen=max_recent)
        self.current_query: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def is_researching(self) -> bool:
        return self._lock.locked()

    async def clarify(self, query: str, task_context: str = "", task_title: str = "") -> List[str]:
        system, user = clarification_prompt(query, task_context, task_title)
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=0.7,
                max_tokens=300,
                require_structured_output=True,
                model_tier="fast",
            )
        )
        parsed = decode(result.content, ClarifyingQuestions)
        return clip_questions(parsed.questions, result.content)

    async def search(
        self,
        query: str,
        clarifications: Sequence[QAPair] = (),
        task_context: str = "",
        task_title: str = "",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        system, user = browser_search_prompt(query, clarifications, task_context, task_title)
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=0.7,
                max_tokens=1200,
                model_tier="fast",
                model=self.search_model,
                tools=[self.search_tool],
            ),
            cancel_event=cancel_event,
            timeout_s=self.search_timeout_s,
        )
        return result.content.strip()

    async def synthesize(
        self,
        query: str,
        clarifications: Sequence[QAPair],
        raw_results: str,
        task_context: str = "",
    ) -> str:
        system, user = synthesis_prompt(query, clarifications, raw_results, task_context)
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=0.7,
                max_tokens=800,
                model_tier="standard",
            )
        )
        return result.content.strip()

    def _build_record(
        self,
        query: str,
        clarifications: Sequence[QAPair],
        synthesis: str,
        goal_id: str,
        task_id: Optional[str],
    ) -> ResearchRecord:
        title = f"Research: {query}"
        finding = ResearchFinding(
            query=query,
            clarifying_qa=list(clarifications),
            search_results=synthesis,
            was_auto_saved=True,
        )
        entry = KnowledgeBaseEntry(
            goal_id=goal_id,
            type="research",
            title=title,
            content=synthesis,
            tags=["research", "auto-generated"],
        )
        report = AIReport(
            goal_id=goal_id,
            task_id=task_id,
            title=title,
            summary=synthesis[:SUMMARY_CHARS],
            details=synthesis,
        )
        return ResearchRecord(goal_id=goal_id, task_id=task_id, finding=finding, knowledge_entry=entry, report=report)

    async def research(
        self,
        query: str,
        goal_id: str,
        task_context: str = "",
        task_title: str = "",
        task_id: Optional[str] = None,
        clarifications: Sequence[QAPair] = (),
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ResearchRecord:
        """Run one research cycle.

        Nothing is recorded unless the search completion succeeds; failures raise
        ResearchFailure (cancellation propagates as RequestCancelled).
        """
        query = (query or "").strip()
        if not query:
            raise ResearchFailure(query, detail="empty query")
        async with self._lock:
            self.current_query = query
            try:
                try:
                    synthesis = await self.search(query, clarifications, task_context, task_title, cancel_event)
                except RequestCancelled:
                    raise
                except MomentumError as exc:
                    logger.warning("Research search failed for %r: %s", query, exc)
                    raise ResearchFailure(query, cause=exc) from exc
                if not synthesis:
                    raise ResearchFailure(query, detail="search returned no content")
                # A cancel that lands while the last attempt is in flight still drops the result.
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Research for %r cancelled, discarding result", query)
                    raise RequestCancelled()

                record = self._build_record(query, clarifications, synthesis, goal_id, task_id)
                if self.store is not None:
                    try:
                        await self.store.save_research(record.finding, record.knowledge_entry, record.report)
                    except aiosqlite.Error as exc:
                        logger.warning("Could not persist research for %r: %s", query, exc)
                        raise ResearchFailure(query, cause=exc) from exc
                self.recent_results.appendleft(record)
                logger.info("Research completed for %r (%d chars)", query, len(synthesis))
                return record
            finally:
                self.current_query = None

    def should_auto_research(self, task: TaskContext) -> bool:
        evaluation = task.evaluation
        if evaluation is None:
            return False
        return evaluation.approach == "aiAssisted" and "research" in evaluation.skills_required

    async def auto_research(self, task: TaskContext, goal: GoalContext) -> Optional[ResearchRecord]:
        if not self.should_auto_research(task):
            return None
        return await self.research(
            query=task.description or task.title,
            goal_id=goal.id,
            task_context=goal.context_text,
            task_title=task.title,
            task_id=task.id,
        )
