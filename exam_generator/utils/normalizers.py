"""Normalize raw model text into exam drafts and clean up exam titles."""

import json
import logging
import re
from typing import Any, Dict

from pydantic import ValidationError

from exam_generator.errors import MalformedModelOutputError
from exam_generator.models.exam import TASK_KEYS, AnalysisResult, ExamDraft, first_present

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_POINTS = 20
TITLE_FALLBACK = "Ohne Thema"

FORBIDDEN_TITLE_WORDS: tuple[str, ...] = (
    "Schulaufgabe",
    "Stegreifaufgabe",
    "Klassenarbeit",
    "Klasse",
    "Klausur",
    "Prüfung",
    "Exam",
    "Test",
)

_LEADING_FENCE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```$")
_FORBIDDEN_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(word) for word in FORBIDDEN_TITLE_WORDS) + r")\b",
    re.IGNORECASE,
)
_EDGE_PUNCTUATION = ":-–—,.;/|"
_BRACKETED_RE = re.compile(r"([(\[])([^()\[\]]*)([)\]])")


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json (or bare ```) fence and a trailing ``` fence."""
    text = _LEADING_FENCE.sub("", text, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def parse_model_json(raw_text: str) -> Dict[str, Any]:
    """Parse model output that is expected, but not guaranteed, to be JSON.

    Steps: trim, strip a code fence, unescape \\' apostrophes, json.loads.

    Raises:
        MalformedModelOutputError: empty text, invalid JSON or a non-object
            top-level value. The raw text is logged, never attached to the
            public message.
    """
    if raw_text is None or not raw_text.strip():
        raise MalformedModelOutputError("Model returned an empty response")

    clean = strip_code_fence(raw_text.strip())
    clean = clean.replace("\\'", "'")

    try:
        data = json.loads(clean)
    except json.JSONDecodeError as e:
        logger.warning(f"Model output is not valid JSON ({e}). Raw: {raw_text!r}")
        raise MalformedModelOutputError(f"Model output is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        logger.warning(f"Model output is not a JSON object. Raw: {raw_text!r}")
        raise MalformedModelOutputError(
            f"Model output has top-level type {type(data).__name__}, expected object"
        )
    return data


def normalize_exam_draft(raw_text: str) -> ExamDraft:
    """Turn raw model text into a validated ExamDraft.

    A draft without a task array, or with no usable tasks, is rejected:
    rendering an exam without tasks is never a valid outcome.
    """
    data = parse_model_json(raw_text)

    if not isinstance(first_present(data, *TASK_KEYS), list):
        logger.warning(f"Model output lacks a task array. Keys: {sorted(data)}")
        raise MalformedModelOutputError("Model output has no task array")

    try:
        draft = ExamDraft.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Model output failed schema validation: {e}")
        raise MalformedModelOutputError(f"Model output failed validation: {e}") from e

    if not draft.tasks:
        raise MalformedModelOutputError("Model output contains no usable tasks")
    return draft


def normalize_analysis(raw_text: str) -> AnalysisResult:
    """Turn raw model text into subject/grade/topic fields."""
    data = parse_model_json(raw_text)
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise MalformedModelOutputError(f"Analysis output failed validation: {e}") from e


def _clean_bracketed(match: "re.Match[str]") -> str:
    inner = match.group(2)
    if not _FORBIDDEN_RE.search(inner):
        return match.group(0)
    rest = _FORBIDDEN_RE.sub(" ", inner).strip(_EDGE_PUNCTUATION + " ")
    # '(Klasse 9)' leaves only the grade number behind
    if not rest or rest.isdigit():
        return " "
    return f"{match.group(1)}{rest}{match.group(3)}"


def clean_title(title: str, fallback: str = TITLE_FALLBACK) -> str:
    """Strip exam-type words from a title so only the topic remains.

    'Schulaufgabe: Quadratische Funktionen' -> 'Quadratische Funktionen',
    'Optik (Klasse 9)' -> 'Optik'. Idempotent; a title made only of
    forbidden words yields the fallback.
    """
    if not title:
        return fallback
    clean = _BRACKETED_RE.sub(_clean_bracketed, title)
    clean = _FORBIDDEN_RE.sub(" ", clean)
    clean = re.sub(r"\s+", " ", clean)
    clean = clean.strip(_EDGE_PUNCTUATION + " ")
    return clean or fallback


def effective_total_points(draft: ExamDraft) -> int:
    """Total points for the grade scale; never zero."""
    total = draft.declared_points
    return total if total > 0 else DEFAULT_TOTAL_POINTS
