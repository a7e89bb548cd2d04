import logging
import re
from typing import Optional

from .prompts import intent_prompt
from .router import CompletionBackend
from .schemas import DEFAULT_INTENT, INTENTS, CompletionRequest, Intent


logger = logging.getLogger(__name__)

_LOOKUP = {name.lower(): name for name in INTENTS}
_PREFIX_RE = re.compile(r"^\s*intent\s*[:=-]\s*", re.IGNORECASE)


def normalize_intent(raw: Optional[str]) -> Intent:
    """Map a model reply onto the closed intent set; unknown replies become ``taskHelp``."""
    text = (raw or "").strip()
    text = _PREFIX_RE.sub("", text)
    text = text.strip().strip("\"'`*.!?,;: ")
    intent = _LOOKUP.get(text.lower())
    if intent is None:
        logger.info("Unrecognized intent %r, using %s", (raw or "")[:40], DEFAULT_INTENT)
        return DEFAULT_INTENT
    return intent  # type: ignore[return-value]


class IntentClassifier:
    def __init__(self, backend: CompletionBackend, temperature: float = 0.3, max_tokens: int = 10):
        self.backend = backend
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def classify(self, message: str, task_context: str = "") -> Intent:
        system, user = intent_prompt(message, task_context)
        result = await self.backend.execute(
            CompletionRequest(
                system_prompt=system,
                user_prompt=user,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                model_tier="fast",
            )
        )
        return normalize_intent(result.content)
