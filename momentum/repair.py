"""Best-effort cleanup of near-valid JSON emitted by the model, then strict decoding.

The repair pass is a narrow textual heuristic, not a parser. Input that already parses
is returned unchanged. Otherwise the ordered passes below are repeated until the
text stops changing:

1. strip surrounding whitespace and markdown code fences
2. drop commas that directly precede ``}``, ``]`` or the end of the text
3. collapse doubled separators after a key (``"k": : 1`` -> ``"k": 1``)
4. give a key with no value an explicit ``null`` (``"k": ,`` -> ``"k": null,``)
5. append the missing ``}`` when ``{`` outnumbers ``}``

Known blind spots: braces, commas and colons inside string literals are counted like
structural ones; unbalanced ``[`` is left alone; a missing ``"`` is not repaired. The
result carries no confidence score, so a payload can decode into something the model
did not mean.
"""

import json
import logging
import re
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import DecodeFailure


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```$")
_TRAILING_COMMA_RE = re.compile(r"(?:,\s*)+(?=[}\]]|$)")
_DOUBLED_SEPARATOR_RE = re.compile(r'(?<!\\)("(?:[^"\\\n]|\\.)*")\s*:\s*(?:[:;]\s*)+')
_MISSING_VALUE_RE = re.compile(r'(?<!\\)("(?:[^"\\\n]|\\.)*")\s*:\s*(?=[,}\]]|$)')


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def strip_fences(text: str) -> str:
    cleaned = text.strip()
    while True:
        stripped = _FENCE_OPEN_RE.sub("", cleaned, count=1)
        stripped = _FENCE_CLOSE_RE.sub("", stripped, count=1).strip()
        if stripped == cleaned:
            return cleaned
        cleaned = stripped


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub("", text)


def collapse_key_artifacts(text: str) -> str:
    text = _DOUBLED_SEPARATOR_RE.sub(r"\1: ", text)
    return _MISSING_VALUE_RE.sub(r"\1: null", text)


def balance_braces(text: str) -> str:
    missing = text.count("{") - text.count("}")
    if missing > 0:
        return text + "}" * missing
    return text


def _repair_pass(text: str) -> str:
    text = strip_fences(text)
    if _is_json(text):
        return text
    text = strip_trailing_commas(text)
    text = collapse_key_artifacts(text)
    text = balance_braces(text)
    return text.strip()


def repair_json(raw: str) -> str:
    """Return a cleaned copy of ``raw``; idempotent, and a no-op on valid JSON."""
    raw = raw or ""
    if _is_json(raw):
        return raw
    text = raw
    # Every pass only shrinks the text or fills a gap once, so this terminates.
    while True:
        repaired = _repair_pass(text)
        if repaired == text:
            return text
        text = repaired


def decode_json(raw: str) -> Any:
    cleaned = repair_json(raw)
    try:
        return json.loads(cleaned)
    except ValueError as exc:
        logger.warning("Structured output still invalid after repair: %s", exc)
        raise DecodeFailure(raw, cleaned, exc) from exc


def decode(raw: str, model_cls: Type[T]) -> T:
    """Repair ``raw`` and validate it into ``model_cls``.

    Raises DecodeFailure carrying both the original and the cleaned text.
    """
    cleaned = repair_json(raw)
    try:
        return model_cls.model_validate_json(cleaned)
    except ValidationError as exc:
        logger.warning("Could not decode %s: %s", model_cls.__name__, exc.errors()[:3])
        raise DecodeFailure(raw, cleaned, exc) from exc
