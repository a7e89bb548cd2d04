import asyncio
import json
from typing import Any, Dict, List, Optional

from momentum.schemas import CompletionRequest, CompletionResult


# Substrings of each system prompt, used to tell calls apart.
MARKERS = {
    "intent": "determine their intent",
    "clarify": "clarifying questions to help focus",
    "task_help": "helpful AI coach",
    "search": "browser_search tool",
    "synthesis": "synthesizing web search results",
    "report": "tiered depth",
    "tool_prompt": "copy-paste into",
    "task_tool_prompt": "copy-paste ready prompt",
    "analysis": "Analyze this task",
    "briefing": "morning briefing",
    "plan": "HYPER-PERSONALIZED",
    "onboarding": "adaptive questions",
    "weekly": "next week of a milestone",
    "evaluation": "Evaluate tasks",
}

DEFAULT_RESPONSES: Dict[str, Any] = {
    "intent": "taskHelp",
    "clarify": json.dumps(
        {"questions": ["Which market are you targeting?", "What price range are you considering?"]}
    ),
    "task_help": "Start with the smallest version you can ship today.",
    "search": "Summary: pricing for indie apps clusters around $3-$10/month.\n- Finding one\nSources: https://example.com",
    "synthesis": "Synthesized summary.",
    "report": json.dumps({"summary": "Short summary", "details": "Longer details", "sources": ["https://example.com"]}),
    "tool_prompt": json.dumps(
        {"summary": "Prompt for Cursor", "details": "Why", "tool_name": "Cursor", "prompt": "Build a landing page"}
    ),
    "task_tool_prompt": json.dumps({"tool_name": "Cursor", "prompt": "Write the code", "context": "Because"}),
    "analysis": json.dumps(
        {
            "questions_needed": [
                {"question": "Who is the audience?", "options": [{"label": "Students"}], "allows_custom_input": True}
            ],
            "research_needed": ["Competitor pricing"],
            "can_proceed": True,
        }
    ),
    "briefing": json.dumps({"insight": "You are on a roll.", "focus_area": "Ship the pricing page"}),
    "plan": json.dumps(
        {
            "vision_refined": "Launch a paid app by December",
            "milestones": [{"sequence": 1, "title": "Validate idea", "description": "Talk to users"}],
            "first_week_tasks": [
                {
                    "title": "Interview two users",
                    "description": "Find early adopters",
                    "outcome_goal": "Two interviews done",
                    "checklist": [{"text": "Write questions", "estimated_minutes": 15}],
                    "scheduled_day": 2,
                }
            ],
        }
    ),
    "onboarding": json.dumps(
        {"questions": [{"question": "Experience?", "options": ["None", "Some"], "allowsTextInput": True}]}
    ),
    "weekly": json.dumps({"tasks": [{"title": "Draft copy", "checklist": [{"text": "Outline", "estimated_minutes": 20}]}]}),
    "evaluation": json.dumps(
        {"evaluations": [{"task_title": "Draft copy", "approach": "aiAssisted", "skills_required": ["research"]}]}
    ),
}


def classify_request(request: CompletionRequest) -> str:
    for kind, marker in MARKERS.items():
        if marker in request.system_prompt:
            return kind
    return "unknown"


class FakeCompletionBackend:
    """Scripted stand-in for the completion router.

    A response is a string, an exception instance (raised) or a list of either,
    consumed one per call.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, delay_seconds: float = 0.0) -> None:
        self.name = "fake"
        self.responses: Dict[str, Any] = dict(DEFAULT_RESPONSES)
        self.responses.update(responses or {})
        self.delay_seconds = delay_seconds
        self.calls: List[Dict[str, Any]] = []
        self.active = 0
        self.max_active = 0

    def kinds(self) -> List[str]:
        return [call["kind"] for call in self.calls]

    def count(self, kind: str) -> int:
        return self.kinds().count(kind)

    async def execute(
        self,
        request: CompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> CompletionResult:
        kind = classify_request(request)
        self.calls.append({"kind": kind, "request": request, "timeout_s": timeout_s})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            response = self.responses.get(kind, "")
            if isinstance(response, list):
                response = response.pop(0) if response else ""
            if isinstance(response, BaseException):
                raise response
            return CompletionResult(content=response, model=request.model or "fake-model")
        finally:
            self.active -= 1
