"""Value types for exercise items, answer records, snapshots and library entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union
from uuid import uuid4


def new_id() -> str:
    return str(uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class Mode(str, Enum):
    QUIZ = "Quiz"
    MIXED_QUIZ = "MixedQuiz"
    MATCH = "Match"
    FLASHCARDS = "Flashcards"
    GUIDED = "Guided"


class ItemKind(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    FILL_BLANK = "fill_blank"
    OPEN_ENDED = "open_ended"


_KIND_ALIASES = {
    "multiple_choice": ItemKind.MULTIPLE_CHOICE,
    "mcq": ItemKind.MULTIPLE_CHOICE,
    "fill_blank": ItemKind.FILL_BLANK,
    "fill_in_blank": ItemKind.FILL_BLANK,
    "open_ended": ItemKind.OPEN_ENDED,
    "open": ItemKind.OPEN_ENDED,
}


def parse_kind(raw: Any) -> ItemKind:
    """Map a kind label (any case, including legacy upper-case names) to ItemKind."""
    key = str(raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _KIND_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown item kind: {raw!r}") from None


# ---------- Exercise items ----------

@dataclass(frozen=True)
class OpenQuestion:
    question: str
    answer: str

    def to_dict(self) -> dict[str, Any]:
        return {"question": self.question, "answer": self.answer}


@dataclass(frozen=True)
class MixedItem:
    question: str
    kind: ItemKind
    answer: str
    options: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "type": self.kind.value,
            "answer": self.answer,
            "options": list(self.options),
        }


@dataclass(frozen=True)
class MatchPair:
    term: str
    definition: str

    def to_dict(self) -> dict[str, Any]:
        return {"term": self.term, "definition": self.definition}


ExerciseItem = Union[OpenQuestion, MixedItem, MatchPair]


def item_from_dict(raw: dict[str, Any]) -> ExerciseItem:
    """Rebuild an exercise item from its persisted dict, dispatching on shape."""
    if not isinstance(raw, dict):
        raise ValueError("Exercise item must be a dict.")
    if "term" in raw:
        return MatchPair(term=str(raw.get("term") or ""), definition=str(raw.get("definition") or ""))
    if "type" in raw:
        options = raw.get("options") if isinstance(raw.get("options"), list) else []
        return MixedItem(
            question=str(raw.get("question") or ""),
            kind=parse_kind(raw.get("type")),
            answer=str(raw.get("answer") or ""),
            options=tuple(str(o) for o in options),
        )
    return OpenQuestion(question=str(raw.get("question") or ""), answer=str(raw.get("answer") or ""))


# ---------- Judging and records ----------

@dataclass(frozen=True)
class Verdict:
    is_correct: bool
    feedback: str


@dataclass(frozen=True)
class AnswerRecord:
    item: ExerciseItem
    user_answer: str
    is_correct: bool
    feedback: str
    time_taken_seconds: float
    item_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.item.to_dict(),
            "userAnswer": self.user_answer,
            "isCorrect": self.is_correct,
            "feedback": self.feedback,
            "timeTaken": round(self.time_taken_seconds, 1),
            "itemIndex": self.item_index,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Value copy of a paused session, sufficient to resume it exactly."""

    mode: Mode
    items: tuple[ExerciseItem, ...]
    topic: str
    score: int
    time_remaining: int
    initial_duration: int
    records: tuple[AnswerRecord, ...] = ()
    cursor_index: int = 0
    matched_indices: frozenset[int] = frozenset()
    matched_terms: frozenset[str] = frozenset()
    matched_definitions: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not 0 <= self.cursor_index <= len(self.items):
            raise ValueError("cursor_index must be within the item list.")
        if self.time_remaining > self.initial_duration:
            raise ValueError("time_remaining cannot exceed initial_duration.")


@dataclass(frozen=True)
class MatchSummary:
    pairs: tuple[MatchPair, ...]
    elapsed_seconds: int
    completed: bool
    matched_pairs: int


@dataclass(frozen=True)
class ReportArtifact:
    """Rendered, self-contained performance report (Markdown)."""

    topic: str
    mode: Mode
    content: str


# ---------- Library entries ----------

@dataclass(frozen=True)
class HistoryDetails:
    total_time: float
    time_per_question: tuple[float, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"totalTime": self.total_time, "timePerQuestion": list(self.time_per_question)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> HistoryDetails:
        per_question = raw.get("timePerQuestion") if isinstance(raw.get("timePerQuestion"), list) else []
        return cls(
            total_time=float(raw.get("totalTime") or 0),
            time_per_question=tuple(float(t) for t in per_question),
        )


@dataclass(frozen=True)
class HistoryItem:
    mode: Mode
    topic: str
    score: str
    details: HistoryDetails | None = None
    id: str = field(default_factory=new_id)
    date: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "mode": self.mode.value,
            "topic": self.topic,
            "score": self.score,
            "date": self.date,
        }
        if self.details is not None:
            out["details"] = self.details.to_dict()
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> HistoryItem:
        details = raw.get("details")
        return cls(
            id=str(raw["id"]),
            mode=Mode(raw.get("mode")),
            topic=str(raw.get("topic") or ""),
            score=str(raw.get("score") or ""),
            date=str(raw.get("date") or ""),
            details=HistoryDetails.from_dict(details) if isinstance(details, dict) else None,
        )


@dataclass(frozen=True)
class SavedExercise:
    name: str
    mode: Mode
    topic: str
    data: tuple[ExerciseItem, ...]
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode.value,
            "topic": self.topic,
            "data": [item.to_dict() for item in self.data],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SavedExercise:
        data = raw.get("data") if isinstance(raw.get("data"), list) else []
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            mode=Mode(raw.get("mode")),
            topic=str(raw.get("topic") or ""),
            data=tuple(item_from_dict(d) for d in data),
        )


@dataclass(frozen=True)
class SavedReport:
    topic: str
    mode: Mode
    content: str
    id: str = field(default_factory=new_id)
    date: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "topic": self.topic,
            "mode": self.mode.value,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SavedReport:
        return cls(
            id=str(raw["id"]),
            date=str(raw.get("date") or ""),
            topic=str(raw.get("topic") or ""),
            mode=Mode(raw.get("mode")),
            content=str(raw.get("content") or ""),
        )


@dataclass(frozen=True)
class SolutionStep:
    step_title: str
    explanation: str
    calculation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"stepTitle": self.step_title, "explanation": self.explanation, "calculation": self.calculation}


@dataclass(frozen=True)
class SavedSolution:
    title: str
    steps: tuple[SolutionStep, ...]
    final_answer: str
    markdown_content: str = ""
    id: str = field(default_factory=new_id)
    date: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "title": self.title,
            "steps": [s.to_dict() for s in self.steps],
            "finalAnswer": self.final_answer,
            "markdownContent": self.markdown_content,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SavedSolution:
        steps = raw.get("steps") if isinstance(raw.get("steps"), list) else []
        return cls(
            id=str(raw["id"]),
            date=str(raw.get("date") or ""),
            title=str(raw.get("title") or ""),
            steps=tuple(
                SolutionStep(
                    step_title=str(s.get("stepTitle") or ""),
                    explanation=str(s.get("explanation") or ""),
                    calculation=s.get("calculation") or None,
                )
                for s in steps
                if isinstance(s, dict)
            ),
            final_answer=str(raw.get("finalAnswer") or ""),
            markdown_content=str(raw.get("markdownContent") or ""),
        )


@dataclass(frozen=True)
class FlashcardSet:
    name: str
    cards: tuple[MatchPair, ...]
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "cards": [c.to_dict() for c in self.cards]}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FlashcardSet:
        cards = raw.get("cards") if isinstance(raw.get("cards"), list) else []
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            cards=tuple(
                MatchPair(term=str(c.get("term") or ""), definition=str(c.get("definition") or ""))
                for c in cards
                if isinstance(c, dict)
            ),
        )
