"""
Guided learning: step-by-step worked solutions for a problem statement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from config import SOLVER_TEMPERATURE
from services.errors import GenerationError
from services.library_store import LibraryStore
from services.llm_service import LLMProcessor
from services.models import SavedSolution, SolutionStep
from utils.metrics import timed

LOGGER = logging.getLogger("studyengine.solver")

SOLVER_SYSTEM_PROMPT = """You are an expert tutor. Give a detailed step-by-step solution to the student's problem.
Return ONLY a JSON object with this schema:
{
  "title": "short title of the problem",
  "steps": [
    {"stepTitle": "string", "explanation": "string", "calculation": "optional worked calculation"}
  ],
  "finalAnswer": "string"
}"""


@dataclass(frozen=True)
class Solution:
    title: str
    steps: tuple[SolutionStep, ...]
    final_answer: str


def _parse_solution(obj: Any) -> Solution | None:
    """Normalize the solver's JSON; None when there is no usable step or answer."""
    if not isinstance(obj, dict):
        return None
    raw_steps = obj.get("steps") if isinstance(obj.get("steps"), list) else []
    steps = []
    for s in raw_steps:
        if not isinstance(s, dict):
            continue
        explanation = str(s.get("explanation") or "").strip()
        if not explanation:
            continue
        calculation = str(s.get("calculation") or "").strip()
        steps.append(
            SolutionStep(
                step_title=str(s.get("stepTitle") or "").strip(),
                explanation=explanation,
                calculation=calculation or None,
            )
        )
    final_answer = str(obj.get("finalAnswer") or "").strip()
    if not steps or not final_answer:
        return None
    title = str(obj.get("title") or "").strip() or "Solution"
    return Solution(title=title, steps=tuple(steps), final_answer=final_answer)


def solution_to_markdown(solution: Solution | SavedSolution) -> str:
    md = f"# {solution.title}\n\n"
    for index, step in enumerate(solution.steps, start=1):
        md += f"## Step {index}: {step.step_title}\n\n"
        md += f"{step.explanation}\n\n"
        if step.calculation:
            md += f"```\n{step.calculation}\n```\n\n"
    md += f"### Final answer\n\n{solution.final_answer}\n"
    return md


def save_solution(library: LibraryStore, solution: Solution) -> SavedSolution:
    """Store a solution with its Markdown rendering. Ignored by an inert library."""
    saved = SavedSolution(
        title=solution.title,
        steps=solution.steps,
        final_answer=solution.final_answer,
        markdown_content=solution_to_markdown(solution),
    )
    library.append("solutions", saved)
    return saved


class GuidedSolver:
    """Asks the LLM for a structured worked solution."""

    def __init__(self, llm: LLMProcessor | None = None, api_key: str = "") -> None:
        self._llm = llm or LLMProcessor(api_key)

    async def solve(self, problem: str) -> Solution:
        """
        Solve ``problem`` step by step.

        Raises:
            GenerationError: If the problem is empty, the call fails, or no usable solution comes back.
        """
        clean = (problem or "").strip()
        if not clean:
            raise GenerationError("Please describe the problem to solve.")
        with timed("solve"):
            try:
                obj = await self._llm.ainvoke_json_object(SOLVER_SYSTEM_PROMPT, clean, temperature=SOLVER_TEMPERATURE)
            except ValueError as e:
                raise GenerationError(str(e)) from e
        solution = _parse_solution(obj)
        if solution is None:
            LOGGER.warning("solver returned no usable solution: %r", obj)
            raise GenerationError("Could not build a solution for this problem.")
        return solution
