"""
Exercise content: generate and validate quiz items and term/definition pairs via LLM.
"""

from __future__ import annotations

import logging
from typing import Any

from config import GENERATION_TEMPERATURE, MAX_ITEM_COUNT, MIN_MATCH_PAIRS
from services.errors import GenerationError
from services.llm_service import LLMProcessor, _extract_json_object
from services.models import (
    ExerciseItem,
    ItemKind,
    MatchPair,
    MixedItem,
    Mode,
    OpenQuestion,
    parse_kind,
)
from utils.metrics import timed

LOGGER = logging.getLogger("studyengine.generator")

GENERATOR_SYSTEM_PROMPT = (
    "You are an expert tutor writing study exercises. "
    "Return ONLY valid JSON (no markdown, no extra text)."
)

OPEN_QUESTIONS_PROMPT = (
    'Write a quiz with {count} open-ended questions about "{topic}". '
    "Give a correct and concise answer for each one. "
    'Respond with a JSON object with a key "questions" holding a list of objects, '
    'each with "question" and "answer".'
)

MIXED_QUIZ_PROMPT = (
    'Write a mixed quiz with {count} questions about "{topic}". '
    "Include the types 'multiple_choice', 'fill_blank' and 'open_ended'. "
    "Multiple choice questions have exactly 4 options and the answer is one of them, verbatim. "
    "Fill-in-the-blank questions mark the gap with '___'. "
    'Respond with a JSON object with a key "questions" holding a list of objects with '
    '"question", "type", "answer" and "options" (multiple choice only).'
)

MATCH_PAIRS_PROMPT = (
    'Write {count} term and definition pairs for a matching game about "{topic}". '
    'Respond with a JSON object with a key "pairs" holding a list of objects with "term" and "definition". '
    "Terms must be unique."
)

_PROMPTS = {
    Mode.QUIZ: OPEN_QUESTIONS_PROMPT,
    Mode.MIXED_QUIZ: MIXED_QUIZ_PROMPT,
    Mode.MATCH: MATCH_PAIRS_PROMPT,
    Mode.FLASHCARDS: MATCH_PAIRS_PROMPT,
}


def _validate_open_questions(obj: Any) -> list[OpenQuestion]:
    """Keep questions that have both a non-empty question and answer."""
    raw = obj.get("questions") if isinstance(obj, dict) else None
    if not isinstance(raw, list):
        return []
    out: list[OpenQuestion] = []
    for q in raw:
        if not isinstance(q, dict):
            continue
        question = str(q.get("question") or "").strip()
        answer = str(q.get("answer") or "").strip()
        if question and answer:
            out.append(OpenQuestion(question=question, answer=answer))
    return out


def _validate_mixed_items(obj: Any) -> list[MixedItem]:
    """
    Normalize mixed-type questions.

    Multiple choice items must carry options that include the answer; items
    with an unknown type or no answer are dropped.
    """
    raw = obj.get("questions") if isinstance(obj, dict) else None
    if not isinstance(raw, list):
        return []
    out: list[MixedItem] = []
    for q in raw:
        if not isinstance(q, dict):
            continue
        question = str(q.get("question") or "").strip()
        answer = str(q.get("answer") or "").strip()
        if not question or not answer:
            continue
        try:
            kind = parse_kind(q.get("type"))
        except ValueError:
            continue
        options: tuple[str, ...] = ()
        if kind is ItemKind.MULTIPLE_CHOICE:
            raw_options = q.get("options") if isinstance(q.get("options"), list) else []
            options = tuple(str(o).strip() for o in raw_options if str(o).strip())
            if answer not in options:
                continue
        out.append(MixedItem(question=question, kind=kind, answer=answer, options=options))
    return out


def _parse_term_lines(text: str) -> list[MatchPair]:
    """Parse ``Term: Definition`` lines; the definition keeps any further colons."""
    out: list[MatchPair] = []
    for line in (text or "").splitlines():
        parts = line.split(":")
        if len(parts) < 2 or not parts[0].strip():
            continue
        term = parts[0].strip().lstrip("-*0123456789. ").strip()
        definition = ":".join(parts[1:]).strip()
        if term and definition:
            out.append(MatchPair(term=term, definition=definition))
    return out


def _validate_match_pairs(obj: Any) -> list[MatchPair]:
    """Keep pairs with a term and definition; later duplicates of a term are dropped."""
    raw = None
    if isinstance(obj, dict):
        raw = obj.get("pairs") if isinstance(obj.get("pairs"), list) else obj.get("cards")
    if not isinstance(raw, list):
        return []
    seen: set[str] = set()
    out: list[MatchPair] = []
    for p in raw:
        if not isinstance(p, dict):
            continue
        term = str(p.get("term") or "").strip()
        definition = str(p.get("definition") or "").strip()
        if not term or not definition or term in seen:
            continue
        seen.add(term)
        out.append(MatchPair(term=term, definition=definition))
    return out


class ContentGenerator:
    """Generates exercise items for a topic via LLM."""

    def __init__(self, llm: LLMProcessor | None = None, api_key: str = "") -> None:
        self._llm = llm or LLMProcessor(api_key)

    async def generate(self, topic: str, count: int, mode: Mode) -> list[ExerciseItem]:
        """
        Generate exactly ``count`` items for ``mode``.

        Raises:
            GenerationError: If the call fails or fewer than ``count`` valid items come back.
        """
        clean_topic = (topic or "").strip()
        if not clean_topic:
            raise GenerationError("Please enter a topic.")
        if mode not in _PROMPTS:
            raise GenerationError(f"Mode {mode.value} has no generated content.")
        safe_count = int(count)
        if not 1 <= safe_count <= MAX_ITEM_COUNT:
            raise GenerationError(f"Choose between 1 and {MAX_ITEM_COUNT} items.")
        if mode in (Mode.MATCH, Mode.FLASHCARDS) and safe_count < MIN_MATCH_PAIRS:
            raise GenerationError(f"A matching game needs at least {MIN_MATCH_PAIRS} pairs.")

        prompt = _PROMPTS[mode].format(count=safe_count, topic=clean_topic)
        with timed("generate", mode=mode.value, requested=safe_count) as meta:
            try:
                raw = await self._llm.ainvoke(GENERATOR_SYSTEM_PROMPT, prompt, temperature=GENERATION_TEMPERATURE)
            except ValueError as e:
                raise GenerationError(str(e)) from e
            items = self._parse(raw, mode)
            meta["valid"] = len(items)
        if len(items) < safe_count:
            LOGGER.warning("generate(topic=%s,mode=%s) returned %s/%s items", clean_topic, mode.value, len(items), safe_count)
            raise GenerationError(f"Only {len(items)} of {safe_count} items could be generated.")
        return items[:safe_count]

    async def generate_flashcards(self, topic: str, count: int) -> list[MatchPair]:
        """Term/definition pairs for a flashcard set."""
        return list(await self.generate(topic, count, Mode.FLASHCARDS))  # type: ignore[arg-type]

    def _parse(self, raw: str, mode: Mode) -> list[Any]:
        obj = _extract_json_object(raw)
        if mode is Mode.QUIZ:
            return _validate_open_questions(obj)
        if mode is Mode.MIXED_QUIZ:
            return _validate_mixed_items(obj)
        pairs = _validate_match_pairs(obj)
        return pairs or _parse_term_lines(raw)
