"""Background queue for asynchronous AI work items.

Each item moves ``pending -> inProgress -> completed | failed`` and never back.
A failed item is retried by enqueueing a fresh copy. The queue does not poll:
callers decide when to run ``process_pending``.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import aiosqlite
from pydantic import BaseModel

from .db import WorkItemStore
from .errors import InvalidInput, InvalidTransition, MomentumError
from .prompts import idea_query, research_report_prompt, task_analysis_prompt, tool_prompt
from .repair import decode
from .router import CompletionBackend
from .schemas import (
    WORK_TYPES,
    AIQuestion,
    AIWorkItem,
    AIWorkResult,
    AIWorkStatus,
    AIWorkType,
    CompletionRequest,
    GoalContext,
    QuestionOption,
    TaskAnalysis,
    TaskContext,
    utc_now,
)


logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, tuple] = {
    "pending": ("inProgress",),
    "inProgress": ("completed", "failed"),
    "completed": (),
    "failed": (),
}
INTERRUPTED = "interrupted"
QUESTION_PRIORITIES = ("critical", "important", "optional")

ChangeCallback = Callable[[AIWorkItem], None]
Clock = Callable[[], datetime]


class _AnalysisQuestion(BaseModel):
    question: str
    options: Optional[List[QuestionOption]] = None
    allows_custom_input: Optional[bool] = None
    priority: Optional[str] = None


class _AnalysisPayload(BaseModel):
    questions_needed: Optional[List[_AnalysisQuestion]] = None
    research_needed: Optional[List[str]] = None
    can_proceed: bool = True


def check_transition(item: AIWorkItem, target: AIWorkStatus) -> None:
    if target not in ALLOWED_TRANSITIONS.get(item.status, ()):
        raise InvalidTransition(item.id, item.status, target)


class WorkQueue:
    def __init__(
        self,
        backend: CompletionBackend,
        store: Optional[WorkItemStore] = None,
        default_tool_name: str = "Cursor",
        stale_after_s: float = 15 * 60,
        clock: Optional[Clock] = None,
    ):
        self.backend = backend
        self.store = store
        self.default_tool_name = default_tool_name
        self.stale_after_s = stale_after_s
        self._clock: Clock = clock or utc_now
        self.items: Dict[str, AIWorkItem] = {}
        self.questions: Dict[str, AIQuestion] = {}
        self.goal_contexts: Dict[str, str] = {}
        self._observers: List[ChangeCallback] = []
        self._lock = asyncio.Lock()

    # State

    def on_change(self, callback: ChangeCallback) -> None:
        self._observers.append(callback)

    def register_goal(self, goal: GoalContext) -> None:
        self.goal_contexts[goal.id] = goal.context_text

    def _publish(self, item: AIWorkItem) -> AIWorkItem:
        self.items[item.id] = item
        for callback in self._observers:
            callback(item)
        return item

    async def _put(self, item: AIWorkItem) -> AIWorkItem:
        if self.store is not None:
            await self.store.save(item)
        return self._publish(item)

    async def transition(self, item: AIWorkItem, target: AIWorkStatus, **changes) -> AIWorkItem:
        current = self.items.get(item.id, item)
        check_transition(current, target)
        updated = current.model_copy(update={"status": target, **changes})
        logger.info("Work item %s (%s) %s -> %s", updated.id, updated.type, current.status, target)
        return await self._put(updated)

    async def load(self) -> int:
        if self.store is None:
            return 0
        for item in await self.store.list():
            self.items[item.id] = item
        return len(self.items)

    # Queueing

    async def enqueue(self, item: AIWorkItem) -> str:
        if item.type not in WORK_TYPES:
            raise InvalidInput(f"unknown work item type: {item.type}")
        if item.status != "pending":
            raise InvalidInput("only pending items can be enqueued")
        if item.id in self.items:
            raise InvalidInput(f"work item {item.id} is already queued")
        await self._put(item)
        logger.info("Queued %s work item %s: %s", item.type, item.id, item.title)
        return item.id

    async def _queue(self, work_type: AIWorkType, title: str, goal_id: str, task_id: Optional[str]) -> AIWorkItem:
        if not title or not title.strip():
            raise InvalidInput("work item title must not be empty")
        item = AIWorkItem(goal_id=goal_id, task_id=task_id, type=work_type, title=title.strip())
        await self.enqueue(item)
        return item

    async def queue_research(self, title: str, goal_id: str, task_id: Optional[str] = None) -> AIWorkItem:
        return await self._queue("research", title, goal_id, task_id)

    async def queue_tool_prompt(self, title: str, goal_id: str, task_id: Optional[str] = None) -> AIWorkItem:
        return await self._queue("toolPrompt", title, goal_id, task_id)

    async def retry_failed(self, item_id: str) -> AIWorkItem:
        item = self.get(item_id)
        if item.status != "failed":
            raise InvalidTransition(item.id, item.status, "pending")
        return await self._queue(item.type, item.title, item.goal_id, item.task_id)

    # Queries

    def get(self, item_id: str) -> AIWorkItem:
        item = self.items.get(item_id)
        if item is None:
            raise KeyError(item_id)
        return item

    def status(self, item_id: str) -> AIWorkStatus:
        return self.get(item_id).status

    def items_for(self, goal_id: str) -> List[AIWorkItem]:
        return [item for item in self.items.values() if item.goal_id == goal_id]

    def completed_for(self, goal_id: str) -> List[AIWorkItem]:
        return [item for item in self.items_for(goal_id) if item.status == "completed"]

    def pending_questions_for(self, goal_id: str) -> List[AIQuestion]:
        return [q for q in self.questions.values() if q.goal_id == goal_id and q.answer is None]

    def submit_answer(self, question_id: str, answer: str) -> AIQuestion:
        question = self.questions.get(question_id)
        if question is None:
            raise InvalidInput(f"unknown question: {question_id}")
        if not answer or not answer.strip():
            raise InvalidInput("answer must not be empty")
        answered = question.model_copy(update={"answer": answer.strip(), "answered_at": self._clock()})
        self.questions[question_id] = answered
        return answered

    # Processing

    async def _complete(self, request: CompletionRequest) -> AIWorkResult:
        result = await self.backend.execute(request)
        return decode(result.content, AIWorkResult)

    async def _dispatch(self, item: AIWorkItem, context: str) -> AIWorkResult:
        if item.type in ("research", "report", "ideaGeneration"):
            query = idea_query(item.title) if item.type == "ideaGeneration" else item.title
            system, user = research_report_prompt(query, context)
            return await self._complete(
                CompletionRequest(
                    system_prompt=system,
                    user_prompt=user,
                    temperature=0.7,
                    max_tokens=1200,
                    require_structured_output=True,
                )
            )
        if item.type == "toolPrompt":
            system, user = tool_prompt(self.default_tool_name, context, item.title)
            result = await self._complete(
                CompletionRequest(
                    system_prompt=system,
                    user_prompt=user,
                    temperature=0.7,
                    max_tokens=1500,
                    require_structured_output=True,
                )
            )
            if not result.tool_name:
                result = result.model_copy(update={"tool_name": self.default_tool_name})
            return result
        raise InvalidInput(f"unknown work item type: {item.type}")

    async def _finish(self, item: AIWorkItem, target: AIWorkStatus, **changes) -> AIWorkItem:
        """Move an in-progress item to a terminal state, even when the store refuses the write.

        An unsaved item is failed in memory only; its stored row stays ``inProgress``
        until ``recover_interrupted`` picks it up.
        """
        try:
            return await self.transition(item, target, **changes)
        except aiosqlite.Error as exc:
            logger.error("Could not save work item %s as %s: %s", item.id, target, exc)
            failed = item.model_copy(update={"status": "failed", "error": f"storage error: {exc}"})
            return self._publish(failed)

    async def _process_item(self, item: AIWorkItem, context: str) -> Optional[AIWorkItem]:
        # The in-progress status is stored before the upstream call starts.
        try:
            item = await self.transition(item, "inProgress", started_at=self._clock())
        except aiosqlite.Error as exc:
            logger.error("Could not start work item %s, leaving it pending: %s", item.id, exc)
            return None
        try:
            result = await self._dispatch(item, context)
        except MomentumError as exc:
            logger.warning("Work item %s failed: %s", item.id, exc)
            return await self._finish(item, "failed", error=str(exc) or type(exc).__name__)
        return await self._finish(item, "completed", result=result, completed_at=self._clock())

    def _context_for(self, goal_id: str, goal: Optional[GoalContext]) -> str:
        if goal is not None and goal.id == goal_id:
            return goal.context_text
        return self.goal_contexts.get(goal_id, "")

    async def process_pending(self, goal: Optional[GoalContext] = None) -> List[AIWorkItem]:
        """Run every item that is pending right now, once, in queue order.

        With ``goal`` only that goal's items are processed. Returns the terminal items; an item
        whose start could not be saved stays pending and is left out.
        """
        if goal is not None:
            self.register_goal(goal)
        async with self._lock:
            pending = [
                item
                for item in self.items.values()
                if item.status == "pending" and (goal is None or item.goal_id == goal.id)
            ]
            processed: List[AIWorkItem] = []
            for item in pending:
                done = await self._process_item(item, self._context_for(item.goal_id, goal))
                if done is not None:
                    processed.append(done)
            return processed

    async def analyze_task(self, task: TaskContext, goal: GoalContext) -> TaskAnalysis:
        system, user = task_analysis_prompt(task, goal.context_text)
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=0.7,
                max_tokens=1000,
                require_structured_output=True,
            )
        )
        payload = decode(result.content, _AnalysisPayload)
        questions = [
            AIQuestion(
                task_id=task.id,
                goal_id=goal.id,
                question=q.question,
                options=q.options or [],
                allows_custom_input=bool(q.allows_custom_input),
                priority=q.priority if q.priority in QUESTION_PRIORITIES else "important",
            )
            for q in payload.questions_needed or []
        ]
        research = [topic.strip() for topic in payload.research_needed or [] if topic and topic.strip()]
        return TaskAnalysis(questions_needed=questions, research_needed=research, can_proceed=payload.can_proceed)

    async def process_new_task(self, task: TaskContext, goal: GoalContext) -> TaskAnalysis:
        """Analyze a new task, keep its questions and run the research it needs."""
        self.register_goal(goal)
        analysis = await self.analyze_task(task, goal)
        for question in analysis.questions_needed:
            self.questions[question.id] = question
        async with self._lock:
            for topic in analysis.research_needed:
                item = await self._queue("research", topic, goal.id, task.id)
                await self._process_item(item, goal.context_text)
        logger.info(
            "Task %s analyzed: %d questions, %d research items",
            task.id,
            len(analysis.questions_needed),
            len(analysis.research_needed),
        )
        return analysis

    async def recover_interrupted(self, now: Optional[datetime] = None) -> List[AIWorkItem]:
        """Fail items stuck in progress past the stale window and requeue a fresh copy of each."""
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.stale_after_s)
        requeued: List[AIWorkItem] = []
        async with self._lock:
            stuck = [
                item
                for item in self.items.values()
                if item.status == "inProgress" and (item.started_at or item.created_at) <= cutoff
            ]
            for item in stuck:
                await self.transition(item, "failed", error=INTERRUPTED)
                requeued.append(await self._queue(item.type, item.title, item.goal_id, item.task_id))
        if requeued:
            logger.warning("Requeued %d interrupted work items", len(requeued))
        return requeued
