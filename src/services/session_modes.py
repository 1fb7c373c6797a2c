"""
Mode strategies: item type, submission rules, judging and score format per exercise mode.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from config import TIME_EXPIRED_SUFFIX
from services.answer_judge import judge_fill_blank, judge_multiple_choice
from services.models import ExerciseItem, ItemKind, MatchPair, MixedItem, Mode, OpenQuestion, Verdict


class ModeStrategy(ABC):
    """What differs between the Quiz, MixedQuiz and Match state machines."""

    mode: Mode
    item_type: type
    cursor_based: bool = True

    def validate_items(self, items: Sequence[Any]) -> tuple[ExerciseItem, ...]:
        out = tuple(items)
        if not out:
            raise ValueError("A session needs at least one item.")
        for item in out:
            if not isinstance(item, self.item_type):
                raise ValueError(f"{self.mode.value} sessions take {self.item_type.__name__} items.")
        return out

    def normalize_submission(self, item: ExerciseItem, value: Any) -> str | None:
        """Return the answer to record, or None when the submission is rejected locally."""
        text = str(value if value is not None else "").strip()
        return text or None

    def needs_judge(self, item: ExerciseItem) -> bool:
        return False

    def judge_locally(self, item: ExerciseItem, answer: str) -> Verdict:
        raise NotImplementedError(f"{self.mode.value} items are judged remotely.")

    @abstractmethod
    def history_score(self, score: int, total: int, elapsed_seconds: int, timed_out: bool) -> str:
        """Display string stored on the history entry."""


class QuizStrategy(ModeStrategy):
    """Open-answer quiz: every answer goes to the judge."""

    mode = Mode.QUIZ
    item_type = OpenQuestion

    def needs_judge(self, item: ExerciseItem) -> bool:
        return True

    def history_score(self, score: int, total: int, elapsed_seconds: int, timed_out: bool) -> str:
        return f"{score}/{total}" + (TIME_EXPIRED_SUFFIX if timed_out else "")


class MixedQuizStrategy(QuizStrategy):
    """Mixed quiz: the item kind decides how an answer is judged."""

    mode = Mode.MIXED_QUIZ
    item_type = MixedItem

    def normalize_submission(self, item: ExerciseItem, value: Any) -> str | None:
        assert isinstance(item, MixedItem)
        if item.kind is ItemKind.MULTIPLE_CHOICE:
            # The selection is compared verbatim; no selection means nothing to submit.
            if value is None or str(value) == "":
                return None
            return str(value)
        return super().normalize_submission(item, value)

    def needs_judge(self, item: ExerciseItem) -> bool:
        assert isinstance(item, MixedItem)
        return item.kind is ItemKind.OPEN_ENDED

    def judge_locally(self, item: ExerciseItem, answer: str) -> Verdict:
        assert isinstance(item, MixedItem)
        if item.kind is ItemKind.MULTIPLE_CHOICE:
            return judge_multiple_choice(answer, item.answer)
        return judge_fill_blank(answer, item.answer)


class MatchStrategy(ModeStrategy):
    """Matching game: all cards on the board at once, no cursor."""

    mode = Mode.MATCH
    item_type = MatchPair
    cursor_based = False

    def validate_items(self, items: Sequence[Any]) -> tuple[ExerciseItem, ...]:
        out = super().validate_items(items)
        terms = [p.term for p in out]  # type: ignore[union-attr]
        if len(set(terms)) != len(terms):
            raise ValueError("Match terms must be unique.")
        return out

    def history_score(self, score: int, total: int, elapsed_seconds: int, timed_out: bool) -> str:
        if not timed_out and score == total:
            return f"{elapsed_seconds}s"
        return f"{score}/{total}" + TIME_EXPIRED_SUFFIX


STRATEGIES: dict[Mode, type[ModeStrategy]] = {
    Mode.QUIZ: QuizStrategy,
    Mode.MIXED_QUIZ: MixedQuizStrategy,
    Mode.MATCH: MatchStrategy,
}
