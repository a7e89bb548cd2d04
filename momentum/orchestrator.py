import asyncio
import logging
from typing import Callable, List, Literal, Optional, Sequence

from .errors import ConversationStateError, InvalidInput
from .intent import IntentClassifier
from .prompts import task_help_prompt
from .research import ResearchPipeline
from .router import CompletionBackend
from .schemas import (
    CompletionRequest,
    ConversationMessage,
    ConversationUpdate,
    MessageMetadata,
    MessageRole,
    MessageType,
    QAPair,
    TaskContext,
    new_id,
)


logger = logging.getLogger(__name__)

ConversationState = Literal["idle", "processing", "awaitingClarification"]
MessageCallback = Callable[[ConversationMessage], None]

CLARIFICATION_LEAD = "I have a few questions to help me research this better:"
FINDING_PREVIEW_CHARS = 200
MAX_CONTEXT_FINDINGS = 3


def build_task_context(task: TaskContext) -> str:
    lines = [f"Task: {task.title}"]
    if task.evaluation is not None:
        lines.append(f"Approach: {task.evaluation.approach}")
    lines.append(f"Estimated Time: {task.estimated_minutes} minutes")
    if task.description:
        lines.append(f"Description: {task.description}")
    context = "\n".join(lines)
    if task.research_findings:
        recent = sorted(task.research_findings, key=lambda f: f.timestamp, reverse=True)[:MAX_CONTEXT_FINDINGS]
        context += "\n\nPrevious Research:\n"
        for finding in recent:
            context += f"- {finding.query}: {finding.search_results[:FINDING_PREVIEW_CHARS]}...\n"
    if task.brainstorms:
        context += "\n\nUser Brainstorms:\n"
        for note in task.brainstorms:
            context += f"- {note.content}\n"
    return context


class ConversationOrchestrator:
    """One conversation: classify, clarify, research, answer.

    States run idle -> processing -> (awaitingClarification | idle). Research only
    runs from ``provide_answers``; nothing advances out of awaitingClarification on
    its own. Calls on one instance are serialized.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        pipeline: ResearchPipeline,
        backend: CompletionBackend,
        goal_id: Optional[str] = None,
        on_message: Optional[MessageCallback] = None,
    ):
        self.classifier = classifier
        self.pipeline = pipeline
        self.backend = backend
        self.goal_id = goal_id
        self.on_message = on_message
        self.conversation_id = new_id()
        self.messages: List[ConversationMessage] = []
        self.state: ConversationState = "idle"
        self.clarifying_questions: List[str] = []
        self.pending_query: Optional[str] = None
        self.last_error: Optional[BaseException] = None
        self._lock = asyncio.Lock()
        self._cancel = asyncio.Event()

    @property
    def awaiting_clarification(self) -> bool:
        return self.state == "awaitingClarification"

    @property
    def is_processing(self) -> bool:
        return self.state == "processing"

    def _append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        message_type: Optional[MessageType] = None,
        related_research_id: Optional[str] = None,
    ) -> ConversationMessage:
        if conversation_id != self.conversation_id:
            raise ConversationStateError("conversation was reset while a request was in flight")
        metadata = None
        if message_type is not None:
            metadata = MessageMetadata(message_type=message_type, related_research_id=related_research_id)
        message = ConversationMessage(role=role, content=content, metadata=metadata)
        self.messages.append(message)
        if self.on_message is not None:
            self.on_message(message)
        return message

    def _fail(self, conversation_id: str, exc: BaseException) -> None:
        if conversation_id != self.conversation_id:
            return
        self.last_error = exc
        self.state = "idle"
        self.clarifying_questions = []
        self.pending_query = None
        logger.warning("Conversation %s failed: %s", conversation_id, exc)

    async def submit(self, message: str, task: TaskContext) -> ConversationUpdate:
        if not message or not message.strip():
            raise InvalidInput("message must not be empty")
        async with self._lock:
            if self.state == "awaitingClarification":
                raise ConversationStateError("answer the pending clarifying questions or reset first")
            conversation_id = self.conversation_id
            self.state = "processing"
            self.last_error = None
            try:
                user_message = self._append(conversation_id, "user", message)
                context = build_task_context(task)
                intent = await self.classifier.classify(message, context)
                logger.info("Conversation %s intent=%s", conversation_id, intent)

                if intent == "researchRequest":
                    questions = await self.pipeline.clarify(message, context, task.title)
                    system_message = self._append(conversation_id, "system", CLARIFICATION_LEAD, "clarifyingQuestion")
                    self.clarifying_questions = questions
                    self.pending_query = message
                    self.state = "awaitingClarification"
                    return ConversationUpdate(
                        new_messages=[user_message, system_message],
                        requires_clarification=True,
                        clarifying_questions=list(questions),
                    )

                system, user = task_help_prompt(task.title, task.description, message)
                result = await self.backend.execute(
                    CompletionRequest(system_prompt=system, user_prompt=user, temperature=0.7, max_tokens=300)
                )
                reply = self._append(conversation_id, "assistant", result.content.strip(), "generalHelp")
                self.state = "idle"
                return ConversationUpdate(new_messages=[user_message, reply])
            except Exception as exc:
                self._fail(conversation_id, exc)
                raise

    async def provide_answers(self, answers: Sequence[str], task: TaskContext) -> ConversationUpdate:
        async with self._lock:
            if self.state != "awaitingClarification" or self.pending_query is None:
                raise ConversationStateError("no research request is awaiting clarification")
            if len(answers) != len(self.clarifying_questions):
                raise InvalidInput(
                    f"expected {len(self.clarifying_questions)} answers, got {len(answers)}"
                )
            if any(not (answer or "").strip() for answer in answers):
                raise InvalidInput("clarification answers must not be empty")
            goal_id = task.goal_id or self.goal_id
            if not goal_id:
                raise InvalidInput("task has no goal to attach research to")

            conversation_id = self.conversation_id
            query = self.pending_query
            clarifications = [
                QAPair(question=question, answer=answer.strip())
                for question, answer in zip(self.clarifying_questions, answers)
            ]
            self.state = "processing"
            self.last_error = None
            try:
                record = await self.pipeline.research(
                    query=query,
                    goal_id=goal_id,
                    task_context=build_task_context(task),
                    task_title=task.title,
                    task_id=task.id,
                    clarifications=clarifications,
                    cancel_event=self._cancel,
                )
                reply = self._append(
                    conversation_id,
                    "assistant",
                    record.synthesized_result,
                    "researchResult",
                    related_research_id=record.finding.id,
                )
            except Exception as exc:
                self._fail(conversation_id, exc)
                raise
            self.pending_query = None
            self.clarifying_questions = []
            self.state = "idle"
            return ConversationUpdate(new_messages=[reply], research_finding=record.finding)

    def reset(self) -> None:
        """Drop the transcript and any pending research; results of in-flight calls are discarded."""
        self._cancel.set()
        self._cancel = asyncio.Event()
        self.conversation_id = new_id()
        self.messages = []
        self.state = "idle"
        self.clarifying_questions = []
        self.pending_query = None
        self.last_error = None
