import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from .errors import MomentumError
from .prompts import briefing_prompt
from .repair import decode
from .router import CompletionBackend
from .schemas import BriefingContent, BriefingReport, CompletionRequest, GoalContext, Personality


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now().astimezone()


class BriefingTask(BaseModel):
    title: str
    completed: bool = False
    completed_at: Optional[datetime] = None


class MilestoneProgress(BaseModel):
    title: str
    completion_percentage: float = 0.0


def _local_date(moment: datetime, now: datetime) -> date:
    if moment.tzinfo is not None and now.tzinfo is not None:
        moment = moment.astimezone(now.tzinfo)
    return moment.date()


def greeting_for(moment: datetime) -> str:
    if moment.hour < 12:
        return "Good morning"
    if moment.hour < 17:
        return "Good afternoon"
    return "Good evening"


def fallback_content(pending: int, milestone_name: str) -> BriefingContent:
    plural = "" if pending == 1 else "s"
    return BriefingContent(
        insight=f"You have {pending} task{plural} today. Keep your momentum going!",
        focus_area=f"Stay focused on {milestone_name}",
    )


class BriefingEngine:
    """Morning briefing with a cached report and a labelled local fallback."""

    def __init__(self, backend: CompletionBackend, staleness_s: float = 4 * 60 * 60, clock: Optional[Clock] = None):
        self.backend = backend
        self.staleness_s = staleness_s
        self._clock: Clock = clock or local_now
        self.current: Optional[BriefingReport] = None
        self._lock = asyncio.Lock()

    @property
    def is_generating(self) -> bool:
        return self._lock.locked()

    def is_fresh(self) -> bool:
        if self.current is None or self.current.is_fallback:
            return False
        return self._clock() - self.current.generated_at < timedelta(seconds=self.staleness_s)

    async def generate_if_needed(
        self,
        goal: Optional[GoalContext],
        tasks: Sequence[BriefingTask],
        streak: int,
        milestone: Optional[MilestoneProgress],
        personality: Personality = "energetic",
    ) -> BriefingReport:
        if self.is_fresh():
            logger.info("Cached briefing is fresh, skipping generation")
            return self.current  # type: ignore[return-value]
        return await self.refresh(goal, tasks, streak, milestone, personality)

    async def refresh(
        self,
        goal: Optional[GoalContext],
        tasks: Sequence[BriefingTask],
        streak: int,
        milestone: Optional[MilestoneProgress],
        personality: Personality = "energetic",
    ) -> BriefingReport:
        async with self._lock:
            now = self._clock()
            yesterday = (now - timedelta(days=1)).date()
            pending_titles = [task.title for task in tasks if not task.completed]
            completed_yesterday = sum(
                1
                for task in tasks
                if task.completed and task.completed_at and _local_date(task.completed_at, now) == yesterday
            )
            milestone_name = milestone.title if milestone else "Getting started"
            progress = milestone.completion_percentage if milestone else 0.0
            vision = goal.context_text if goal else "Personal growth"

            is_fallback = False
            try:
                system, user = briefing_prompt(
                    vision, milestone_name, progress, pending_titles, completed_yesterday, streak, personality
                )
                result = await self.backend.execute(
                    CompletionRequest(
                        system_prompt=system,
                        user_prompt=user,
                        temperature=0.8,
                        max_tokens=200,
                        require_structured_output=True,
                    )
                )
                content = decode(result.content, BriefingContent)
            except MomentumError as exc:
                logger.warning("Briefing generation failed, using local fallback: %s", exc)
                content = fallback_content(len(pending_titles), milestone_name)
                is_fallback = True

            report = BriefingReport(
                greeting=greeting_for(now),
                insight=content.insight,
                focus_area=content.focus_area,
                tasks_today=len(pending_titles),
                tasks_completed_yesterday=completed_yesterday,
                current_streak=streak,
                milestone_progress=progress,
                milestone_name=milestone.title if milestone else None,
                goal_domain=goal.domain if goal else None,
                is_fallback=is_fallback,
                generated_at=now,
            )
            self.current = report
            return report
