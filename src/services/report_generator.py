"""
Performance reports for finished sessions: LLM analysis rendered to Markdown.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from config import MODE_LABELS, REPORT_TEMPERATURE
from services.errors import ReportUnavailable
from services.llm_service import LLMProcessor
from services.models import AnswerRecord, MatchSummary, Mode, ReportArtifact
from utils.metrics import timed

LOGGER = logging.getLogger("studyengine.report")

QUIZ_REPORT_PROMPT = """You are an expert tutor writing a performance report for a student.
Return ONLY a JSON object with this schema:
{
  "questionAnalysis": [
    {"explanation": "why the correct answer is correct", "source": "URL of a reliable source", "idealTimeSeconds": 30}
  ],
  "reinforcementTopics": ["concept the student got wrong"],
  "studyMaterials": [{"title": "string", "url": "string"}]
}
Give exactly one questionAnalysis entry per answered question, in order, and 2-3 study materials."""

MATCH_REPORT_PROMPT = """You are an expert tutor writing a performance report for a student who played a term matching game.
Return ONLY a JSON object with this schema:
{
  "performanceSummary": "comment on the player's time",
  "topicAnalysis": "how the terms relate to each other",
  "studyMaterials": [{"title": "string", "url": "string"}]
}"""


def _materials_section(materials: Any) -> list[str]:
    lines = ["### Suggested study materials", ""]
    valid = [m for m in materials if isinstance(m, dict) and m.get("url")] if isinstance(materials, list) else []
    if not valid:
        lines.append("No additional material needed right now.")
    for m in valid:
        lines.append(f"- [{str(m.get('title') or m['url']).strip()}]({str(m['url']).strip()})")
    lines.append("")
    return lines


def render_quiz_report(report_data: dict[str, Any], topic: str, records: Sequence[AnswerRecord]) -> str:
    """Render a quiz analysis to Markdown; missing per-question analysis is marked unavailable."""
    analysis = report_data.get("questionAnalysis") if isinstance(report_data.get("questionAnalysis"), list) else []
    lines = ["## Performance report", "", f"**Topic:** {topic}", "", "### Question analysis", ""]
    for index, record in enumerate(records):
        entry = analysis[index] if index < len(analysis) and isinstance(analysis[index], dict) else None
        ideal = entry.get("idealTimeSeconds") if entry else None
        status = "Correct" if record.is_correct else "Incorrect"
        lines.append(f"#### Question {index + 1}: {status}")
        lines.append("")
        lines.append(f"_Your time: {record.time_taken_seconds:.1f}s / Ideal: {f'{ideal}s' if ideal else 'N/A'}_")
        lines.append("")
        lines.append(f"**Q:** {getattr(record.item, 'question', '')}")
        lines.append("")
        lines.append(f"**Your answer:** {record.user_answer or '_not answered_'}")
        if not record.is_correct:
            lines.append("")
            lines.append(f"**Correct answer:** {getattr(record.item, 'answer', '')}")
        lines.append("")
        if entry and entry.get("explanation"):
            lines.append(str(entry["explanation"]).strip())
            if entry.get("source"):
                lines.append("")
                lines.append(f"Source: <{str(entry['source']).strip()}>")
        else:
            lines.append("AI analysis unavailable for this question.")
        lines.append("")

    lines.extend(["### Topics to reinforce", ""])
    topics = report_data.get("reinforcementTopics") if isinstance(report_data.get("reinforcementTopics"), list) else []
    topics = [str(t).strip() for t in topics if str(t).strip()]
    if topics:
        lines.extend(f"- {t}" for t in topics)
    else:
        lines.append("Well done! You showed a good command of the content.")
    lines.append("")
    lines.extend(_materials_section(report_data.get("studyMaterials")))
    return "\n".join(lines).rstrip() + "\n"


def render_match_report(report_data: dict[str, Any], topic: str, summary: MatchSummary) -> str:
    """Render a match-game analysis to Markdown."""
    if summary.completed:
        status = f"Completed successfully in {summary.elapsed_seconds} seconds."
    else:
        status = f"Time expired with {summary.matched_pairs}/{len(summary.pairs)} pairs matched."
    lines = [
        "## Performance report",
        "",
        f"**Topic:** {topic}",
        "",
        "### Performance summary",
        "",
        f"**Status:** {status}",
        "",
        str(report_data.get("performanceSummary") or "").strip(),
        "",
        "### Topic analysis",
        "",
        str(report_data.get("topicAnalysis") or "").strip(),
        "",
    ]
    lines.extend(_materials_section(report_data.get("studyMaterials")))
    return "\n".join(lines).rstrip() + "\n"


class ReportGenerator:
    """Produces a self-contained performance report for a completed session."""

    def __init__(self, llm: LLMProcessor | None = None, api_key: str = "") -> None:
        self._llm = llm or LLMProcessor(api_key)

    async def generate(
        self,
        topic: str,
        mode: Mode,
        records: Sequence[AnswerRecord] = (),
        match_summary: MatchSummary | None = None,
    ) -> ReportArtifact:
        """
        Analyse a finished session.

        Args:
            topic: Session topic.
            mode: Session mode; Match expects ``match_summary``, quiz modes ``records``.

        Raises:
            ReportUnavailable: If the call fails or returns nothing usable.
        """
        if mode is Mode.MATCH:
            if match_summary is None:
                raise ReportUnavailable("A match report needs the match summary.")
            system_prompt = MATCH_REPORT_PROMPT
            user_message = (
                f'Game topic: "{topic}"\n'
                f"Pairs: {json.dumps([p.to_dict() for p in match_summary.pairs], ensure_ascii=False)}\n"
                f"Total time: {match_summary.elapsed_seconds} seconds\n"
                f"Status: {'completed' if match_summary.completed else 'time expired'}"
            )
        else:
            system_prompt = QUIZ_REPORT_PROMPT
            user_message = (
                f'Quiz topic: "{topic}"\n'
                f"Quiz data: {json.dumps([r.to_dict() for r in records], ensure_ascii=False)}"
            )

        with timed("report", mode=mode.value):
            try:
                report_data = await self._llm.ainvoke_json_object(system_prompt, user_message, temperature=REPORT_TEMPERATURE)
            except ValueError as e:
                raise ReportUnavailable(str(e)) from e

        if not report_data:
            raise ReportUnavailable("The report service returned no analysis.")
        if mode is Mode.MATCH:
            content = render_match_report(report_data, topic, match_summary)  # type: ignore[arg-type]
        else:
            content = render_quiz_report(report_data, topic, records)
        LOGGER.info("report rendered for %s (%s)", topic, MODE_LABELS.get(mode.value, mode.value))
        return ReportArtifact(topic=topic, mode=mode, content=content)
