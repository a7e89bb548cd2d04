import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import InvalidInput
from .prompts import (
    onboarding_questions_prompt,
    project_plan_prompt,
    task_evaluation_prompt,
    task_tool_prompt,
    weekly_tasks_prompt,
)
from .repair import decode
from .router import CompletionBackend
from .schemas import (
    CompletionRequest,
    GeneratedPlan,
    GeneratedTask,
    ModelTier,
    OnboardingAnswers,
    OnboardingQuestion,
    TaskContext,
    TaskEvaluation,
    ToolPrompt,
    WeeklyTasks,
)


logger = logging.getLogger(__name__)


class _QuestionsPayload(BaseModel):
    questions: List[OnboardingQuestion] = Field(default_factory=list)


class _EvaluationsPayload(BaseModel):
    evaluations: List[TaskEvaluation] = Field(default_factory=list)


class PlanGenerator:
    """Onboarding, plan and weekly-task generation on top of a completion backend."""

    def __init__(self, backend: CompletionBackend, plan_tier: ModelTier = "standard"):
        self.backend = backend
        self.plan_tier = plan_tier

    async def _structured(
        self,
        system: str,
        user: str,
        temperature: float,
        max_tokens: int,
        tier: ModelTier = "fast",
    ) -> str:
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=temperature,
                max_tokens=max_tokens,
                require_structured_output=True,
                model_tier=tier,
            )
        )
        return result.content

    async def onboarding_questions(self, vision_text: str) -> List[OnboardingQuestion]:
        if not vision_text.strip():
            raise InvalidInput("vision must not be empty")
        system, user = onboarding_questions_prompt(vision_text)
        raw = await self._structured(system, user, temperature=0.8, max_tokens=1500)
        return decode(raw, _QuestionsPayload).questions

    async def project_plan(self, vision_text: str, answers: OnboardingAnswers) -> GeneratedPlan:
        if not vision_text.strip():
            raise InvalidInput("vision must not be empty")
        if not answers.available_days:
            raise InvalidInput("at least one available day is required")
        system, user = project_plan_prompt(vision_text, answers)
        raw = await self._structured(system, user, temperature=0.7, max_tokens=4000, tier=self.plan_tier)
        plan = decode(raw, GeneratedPlan)
        budget = answers.weekly_hours * 60
        if plan.total_minutes > budget:
            logger.warning("Generated plan uses %d minutes, budget is %d", plan.total_minutes, budget)
        return plan

    async def weekly_tasks(
        self,
        milestone_title: str,
        budget_minutes: int,
        available_days: Sequence[int],
        goal_context: str,
        milestone_description: Optional[str] = None,
        skills: Optional[Dict[str, str]] = None,
        previous_titles: Sequence[str] = (),
    ) -> List[GeneratedTask]:
        if not available_days:
            raise InvalidInput("at least one available day is required")
        system, user = weekly_tasks_prompt(
            milestone_title,
            milestone_description,
            budget_minutes,
            available_days,
            skills or {},
            previous_titles,
            goal_context,
        )
        raw = await self._structured(system, user, temperature=0.7, max_tokens=2000)
        return decode(raw, WeeklyTasks).tasks

    async def evaluate_tasks(
        self,
        tasks: Sequence[TaskContext],
        skills: Optional[Dict[str, str]],
        goal_context: str,
    ) -> List[TaskEvaluation]:
        if not tasks:
            return []
        system, user = task_evaluation_prompt(tasks, skills or {}, goal_context)
        raw = await self._structured(system, user, temperature=0.5, max_tokens=2000)
        evaluations = decode(raw, _EvaluationsPayload).evaluations
        if len(evaluations) != len(tasks):
            logger.warning("Expected %d task evaluations, got %d", len(tasks), len(evaluations))
        return evaluations

    async def tool_prompt(
        self,
        task: TaskContext,
        tool: str,
        goal_context: str,
        skill_level: Optional[str] = None,
    ) -> ToolPrompt:
        system, user = task_tool_prompt(task, tool, skill_level, goal_context)
        raw = await self._structured(system, user, temperature=0.7, max_tokens=1500)
        prompt = decode(raw, ToolPrompt)
        return prompt.model_copy(update={"task_id": task.id, "tool_name": prompt.tool_name or tool})
