import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


Intent = Literal["researchRequest", "taskHelp", "brainstorming", "statusUpdate"]
INTENTS = ("researchRequest", "taskHelp", "brainstorming", "statusUpdate")
DEFAULT_INTENT: Intent = "taskHelp"

MessageRole = Literal["user", "assistant", "system"]
MessageType = Literal["clarifyingQuestion", "researchRequest", "researchResult", "generalHelp"]

AIWorkType = Literal["research", "report", "toolPrompt", "ideaGeneration"]
AIWorkStatus = Literal["pending", "inProgress", "completed", "failed"]
WORK_TYPES = ("research", "report", "toolPrompt", "ideaGeneration")
TERMINAL_STATUSES = ("completed", "failed")

ModelTier = Literal["fast", "standard", "premium"]
TIER_ORDER = ("fast", "standard", "premium")

Personality = Literal["energetic", "calm", "direct", "motivational"]
TaskApproach = Literal["userDirect", "aiAssisted", "toolHandoff", "needsGuidance"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# Completion exchange


class CompletionRequest(BaseModel):
    system_prompt: str
    user_prompt: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    require_structured_output: bool = False
    model_tier: ModelTier = "fast"
    model: Optional[str] = None
    tools: List[str] = Field(default_factory=list)

    model_config = {"frozen": True, "protected_namespaces": ()}


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResult(BaseModel):
    content: str
    model: str = ""
    usage: Optional[TokenUsage] = None
    attempts: int = 1

    model_config = {"protected_namespaces": ()}


# Conversations


class MessageMetadata(BaseModel):
    message_type: MessageType
    related_research_id: Optional[str] = None

    model_config = {"frozen": True}


class ConversationMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Optional[MessageMetadata] = None

    model_config = {"frozen": True}


class QAPair(BaseModel):
    question: str
    answer: str

    model_config = {"frozen": True}


class ResearchFinding(BaseModel):
    id: str = Field(default_factory=new_id)
    query: str
    clarifying_qa: List[QAPair] = Field(default_factory=list)
    search_results: str
    timestamp: datetime = Field(default_factory=utc_now)
    was_auto_saved: bool = True

    model_config = {"frozen": True}


class BrainstormNote(BaseModel):
    id: str = Field(default_factory=new_id)
    content: str
    created_at: datetime = Field(default_factory=utc_now)


class ConversationUpdate(BaseModel):
    new_messages: List[ConversationMessage] = Field(default_factory=list)
    research_finding: Optional[ResearchFinding] = None
    requires_clarification: bool = False
    clarifying_questions: Optional[List[str]] = None


# Inbound collaborator records (goal / task / onboarding)


class TaskEvaluation(BaseModel):
    task_title: str = ""
    approach: TaskApproach = "userDirect"
    ai_can_do: bool = False
    user_can_do: bool = True
    skills_required: List[str] = Field(default_factory=list)
    reasoning: str = ""

    model_config = {"extra": "allow"}


class TaskContext(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    outcome_goal: str = ""
    estimated_minutes: int = 30
    checklist: List[str] = Field(default_factory=list)
    research_findings: List[ResearchFinding] = Field(default_factory=list)
    brainstorms: List[BrainstormNote] = Field(default_factory=list)
    evaluation: Optional[TaskEvaluation] = None


class GoalContext(BaseModel):
    id: str = Field(default_factory=new_id)
    vision_text: str
    vision_refined: Optional[str] = None
    domain: Optional[str] = None
    weekly_minutes: int = 0
    skills: Dict[str, str] = Field(default_factory=dict)

    @property
    def context_text(self) -> str:
        return self.vision_refined or self.vision_text


class OnboardingAnswers(BaseModel):
    vision_text: str = ""
    experience_level: str = ""
    weekly_hours: int = 5
    available_days: List[int] = Field(default_factory=lambda: [2, 4, 6])
    biggest_concern: str = ""
    passions: str = ""
    identity_meaning: str = ""

    @field_validator("available_days")
    @classmethod
    def _valid_days(cls, value: List[int]) -> List[int]:
        days = sorted({int(day) for day in value})
        if any(day < 1 or day > 7 for day in days):
            raise ValueError("available_days must be weekday numbers 1-7 (1 = Sunday)")
        return days


class OnboardingQuestion(BaseModel):
    question: str
    options: Optional[List[str]] = None
    allows_text_input: bool = Field(default=False, alias="allowsTextInput")

    model_config = {"populate_by_name": True}


# Generated plan structures


class ChecklistItem(BaseModel):
    text: str
    estimated_minutes: int = 10


class GeneratedTask(BaseModel):
    title: str
    description: str = ""
    outcome_goal: str = ""
    checklist: List[ChecklistItem] = Field(default_factory=list)
    scheduled_day: Optional[int] = None

    @property
    def total_minutes(self) -> int:
        return sum(item.estimated_minutes for item in self.checklist)


class GeneratedMilestone(BaseModel):
    sequence: int
    title: str
    description: str = ""


class GeneratedPlan(BaseModel):
    vision_refined: str
    milestones: List[GeneratedMilestone] = Field(default_factory=list)
    first_week_tasks: List[GeneratedTask] = Field(default_factory=list)

    @property
    def total_minutes(self) -> int:
        return sum(task.total_minutes for task in self.first_week_tasks)


class WeeklyTasks(BaseModel):
    tasks: List[GeneratedTask] = Field(default_factory=list)


class ToolPrompt(BaseModel):
    task_id: Optional[str] = None
    tool_name: str
    prompt: str
    context: str = ""


# Knowledge and work items


class KnowledgeBaseEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    type: str = "research"
    title: str
    content: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class AIReport(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    task_id: Optional[str] = None
    title: str
    summary: str
    details: str = ""
    sources: Optional[List[str]] = None
    created_at: datetime = Field(default_factory=utc_now)


class AIWorkResult(BaseModel):
    summary: str
    details: Optional[str] = None
    sources: Optional[List[str]] = None
    tool_name: Optional[str] = None
    prompt: Optional[str] = None


class AIWorkItem(BaseModel):
    id: str = Field(default_factory=new_id)
    goal_id: str
    task_id: Optional[str] = None
    type: AIWorkType
    title: str
    status: AIWorkStatus = "pending"
    result: Optional[AIWorkResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class QuestionOption(BaseModel):
    label: str


class AIQuestion(BaseModel):
    id: str = Field(default_factory=new_id)
    task_id: Optional[str] = None
    goal_id: Optional[str] = None
    question: str
    options: List[QuestionOption] = Field(default_factory=list)
    allows_custom_input: bool = False
    priority: Literal["critical", "important", "optional"] = "important"
    answer: Optional[str] = None
    answered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class TaskAnalysis(BaseModel):
    questions_needed: List[AIQuestion] = Field(default_factory=list)
    research_needed: List[str] = Field(default_factory=list)
    can_proceed: bool = True


# Briefing


class BriefingContent(BaseModel):
    insight: str
    focus_area: str


class BriefingReport(BaseModel):
    greeting: str
    insight: str
    focus_area: str
    tasks_today: int = 0
    tasks_completed_yesterday: int = 0
    current_streak: int = 0
    milestone_progress: float = 0.0
    milestone_name: Optional[str] = None
    goal_domain: Optional[str] = None
    is_fallback: bool = False
    generated_at: datetime = Field(default_factory=utc_now)
