"""
Answer judging: LLM verdicts for free-text answers, local rules for the rest.
"""

from __future__ import annotations

import logging

from config import CORRECT_FEEDBACK, INCORRECT_FEEDBACK_TEMPLATE, JUDGE_TEMPERATURE
from services.errors import JudgeUnavailable
from services.llm_service import LLMProcessor
from services.models import Verdict
from utils.metrics import timed

LOGGER = logging.getLogger("studyengine.judge")

JUDGE_SYSTEM_PROMPT = (
    "You are a fair but lenient examiner. Decide whether the student's answer is correct. "
    "Tolerate small typos and rephrasings that keep the meaning. "
    'Return ONLY a JSON object: {"is_correct": true|false, "feedback": "short explanation"}.'
)


def _coerce_bool(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    return None


def judge_multiple_choice(selected: str, canonical: str) -> Verdict:
    """Selected option must equal the canonical answer exactly (case-sensitive)."""
    is_correct = selected == canonical
    return Verdict(
        is_correct=is_correct,
        feedback=CORRECT_FEEDBACK if is_correct else INCORRECT_FEEDBACK_TEMPLATE.format(answer=canonical),
    )


def judge_fill_blank(candidate: str, canonical: str) -> Verdict:
    """Case-insensitive comparison of the trimmed strings."""
    is_correct = candidate.strip().lower() == canonical.strip().lower()
    return Verdict(
        is_correct=is_correct,
        feedback=CORRECT_FEEDBACK if is_correct else INCORRECT_FEEDBACK_TEMPLATE.format(answer=canonical),
    )


class AnswerJudge:
    """Scores free-text answers against a canonical answer via LLM."""

    def __init__(self, llm: LLMProcessor | None = None, api_key: str = "") -> None:
        self._llm = llm or LLMProcessor(api_key)

    async def evaluate(self, question: str, canonical_answer: str, candidate_answer: str) -> Verdict:
        """
        Judge one answer.

        Raises:
            JudgeUnavailable: If the call fails or the verdict cannot be parsed.
        """
        user_message = (
            f'Question: "{question}"\n'
            f'Correct answer: "{canonical_answer}"\n'
            f'Student answer: "{candidate_answer}"'
        )
        with timed("judge"):
            try:
                obj = await self._llm.ainvoke_json_object(JUDGE_SYSTEM_PROMPT, user_message, temperature=JUDGE_TEMPERATURE)
            except ValueError as e:
                raise JudgeUnavailable(str(e)) from e

        is_correct = _coerce_bool(obj.get("is_correct", obj.get("isCorrect")))
        if is_correct is None:
            LOGGER.warning("judge returned no usable verdict: %r", obj)
            raise JudgeUnavailable("The judge returned no verdict.")
        feedback = str(obj.get("feedback") or "").strip()
        return Verdict(is_correct=is_correct, feedback=feedback or (CORRECT_FEEDBACK if is_correct else ""))
