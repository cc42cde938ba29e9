"""Pydantic models for exam drafts, request parameters and grade scales.

The model output is untrusted: every field of the draft models is optional
and defaulted, and the German keys the prompt asks for are accepted next to
the English field names. Anything that leaves this module is fully typed.
"""

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator


def _coerce_text(value: Any) -> str:
    """Turn whatever the model put into a text field into a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "\n".join(_coerce_text(item) for item in value if item is not None)
    return ""


def _coerce_points(value: Any) -> int:
    """Read a point value: '10 BE' -> 10, negatives -> 0, garbage -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if isinstance(value, str):
        match = re.search(r"-?\d+", value)
        return max(int(match.group()), 0) if match else 0
    return 0


LenientText = Annotated[str, BeforeValidator(_coerce_text)]
Points = Annotated[int, BeforeValidator(_coerce_points)]


# Keys the model uses for the task array, in order of preference
TASK_KEYS = ("aufgaben", "tasks")


def first_present(data: Dict[str, Any], *keys: str) -> Any:
    """Return the first truthy value among keys (falls back to the last present one)."""
    found: Any = None
    for key in keys:
        if key in data:
            if data[key]:
                return data[key]
            found = data[key]
    return found


# =============================================================================
# EXAM DRAFT MODELS (normalized model output)
# =============================================================================

class Subtask(BaseModel):
    """One lettered part of a task (a, b, c ...)."""
    body: LenientText = Field(default="", description="Subtask text")
    solution: LenientText = Field(default="", description="Solution for the answer key")

    @model_validator(mode="before")
    @classmethod
    def accept_model_keys(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"body": data}
        if not isinstance(data, dict):
            return data
        return {
            "body": first_present(data, "inhalt", "text", "body"),
            "solution": first_present(data, "loesung", "lösung", "solution"),
        }


class Task(BaseModel):
    """One graded task with optional subtasks."""
    instruction: LenientText = Field(default="", description="Task instruction")
    body: LenientText = Field(default="", description="Task body text")
    solution: LenientText = Field(default="", description="Solution for the answer key")
    points: Points = Field(default=0, ge=0, description="Point value (BE)")
    subtasks: List[Subtask] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_model_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "instruction": first_present(data, "anweisung", "instruction"),
            "body": first_present(data, "inhalt", "text", "body"),
            "solution": first_present(data, "loesung", "lösung", "solution"),
            "points": first_present(data, "punkte", "be", "points"),
            "subtasks": data.get("subtasks") or data.get("teilaufgaben") or [],
        }

    @field_validator("subtasks", mode="before")
    @classmethod
    def drop_unusable_subtasks(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, str))]

    @property
    def has_subtask_solutions(self) -> bool:
        return any(sub.solution for sub in self.subtasks)


class ExamDraft(BaseModel):
    """Structured exam record produced by normalizing the model response."""
    title: LenientText = Field(default="", description="Exam topic as named by the model")
    permitted_aids: LenientText = Field(default="", description="Permitted aids (Hilfsmittel)")
    tasks: List[Task] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_model_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "title": first_present(data, "titel", "title"),
            "permitted_aids": first_present(data, "hilfsmittel", "permitted_aids"),
            "tasks": first_present(data, *TASK_KEYS),
        }

    @field_validator("tasks", mode="before")
    @classmethod
    def drop_unusable_tasks(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @property
    def declared_points(self) -> int:
        return sum(task.points for task in self.tasks)


class AnalysisResult(BaseModel):
    """Subject, grade and topic read from the notes (all best effort)."""
    fach: Optional[str] = None
    klasse: Optional[str] = None
    thema: Optional[str] = None

    @field_validator("fach", "klasse", "thema", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Optional[str]:
        text = _coerce_text(value).strip()
        return text or None


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ExamKindPolicy(BaseModel):
    """Duration and task count policy for one exam kind."""
    label: str
    file_code: str
    duration_minutes: int
    min_tasks: int
    max_tasks: int

    @property
    def duration_label(self) -> str:
        return f"{self.duration_minutes} Min."


class ExamKind(str, Enum):
    """Short-form stimulus check (Stegreifaufgabe) or full class exam (Schulaufgabe)."""
    SHORT_FORM = "ex"
    FULL_EXAM = "sa"

    @classmethod
    def from_form(cls, value: Optional[str]) -> "ExamKind":
        """'ex' selects the short form; anything else is a full exam."""
        if value is not None and value.strip().lower() == cls.SHORT_FORM.value:
            return cls.SHORT_FORM
        return cls.FULL_EXAM

    @property
    def policy(self) -> ExamKindPolicy:
        return EXAM_KIND_POLICIES[self]


EXAM_KIND_POLICIES: Dict[ExamKind, ExamKindPolicy] = {
    ExamKind.SHORT_FORM: ExamKindPolicy(
        label="Stegreifaufgabe",
        file_code="EX",
        duration_minutes=20,
        min_tasks=2,
        max_tasks=3,
    ),
    ExamKind.FULL_EXAM: ExamKindPolicy(
        label="Schulaufgabe",
        file_code="SA",
        duration_minutes=60,
        min_tasks=4,
        max_tasks=6,
    ),
}

DEFAULT_GRADE_LABEL = "9"


class ExamRequestParams(BaseModel):
    """User-supplied form fields for one /generate request."""
    subject: str = Field(description="Subject name (Fach)")
    grade_label: str = Field(default="", description="Grade/class label, free text")
    topic: str = Field(default="", description="Topic hint (Thema)")
    exam_kind: ExamKind = Field(default=ExamKind.FULL_EXAM)

    @field_validator("subject", "grade_label", "topic", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> str:
        return _coerce_text(value).strip()

    @property
    def display_grade(self) -> str:
        return self.grade_label or DEFAULT_GRADE_LABEL


class UploadedImage(BaseModel):
    """A validated image stored in the request workspace."""
    path: Path
    mime_type: str
    size_bytes: int = Field(ge=0)
    original_filename: str = "upload"


# =============================================================================
# GRADE SCALE
# =============================================================================

class GradeBand(BaseModel):
    """Inclusive point range for one grade (1 is best)."""
    grade: int = Field(ge=1, le=6)
    lower: int
    upper: int

    @property
    def is_empty(self) -> bool:
        """True when the formula yields an inverted range (very small totals)."""
        return self.lower > self.upper

    def contains(self, points: int) -> bool:
        return self.lower <= points <= self.upper


class GradeScale(BaseModel):
    """Six grade bands derived from a total point value."""
    total: int = Field(ge=0)
    bands: List[GradeBand]

    def band(self, grade: int) -> GradeBand:
        return self.bands[grade - 1]

    def grade_for(self, points: int) -> int:
        for band in self.bands:
            if band.contains(points):
                return band.grade
        raise ValueError(f"{points} is outside 0..{self.total}")
