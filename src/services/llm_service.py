"""
LLM orchestration: chat calls and JSON extraction helpers.
"""

from __future__ import annotations

import json
import re
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from config import LLM_MODEL


def _strip_fences(raw: str) -> str:
    """Remove markdown code fences and surrounding whitespace from LLM output."""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```\s*$", "", text)
    return text.strip()


def _extract_json_object(raw: str) -> dict[str, Any]:
    """
    Parse a JSON object from LLM output.

    Tries the raw text, then the fence-stripped text, then the first ``{`` to
    the last ``}``. Returns {} when nothing parses to a dict.
    """
    if not raw:
        return {}
    for candidate in [raw, _strip_fences(raw)]:
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return obj if isinstance(obj, dict) else {}
    match = re.search(r"\{[\s\S]*\}", raw)
    if match:
        try:
            obj = json.loads(match.group(0))
        except json.JSONDecodeError:
            return {}
        return obj if isinstance(obj, dict) else {}
    return {}


def _build_llm(api_key: str, temperature: float) -> ChatOpenAI:
    if not (api_key and api_key.strip()):
        raise ValueError("Please provide a valid API key.")
    return ChatOpenAI(model=LLM_MODEL, api_key=api_key.strip(), temperature=temperature)


def _messages(system_prompt: str, user_message: str) -> list:
    return [SystemMessage(content=system_prompt), HumanMessage(content=user_message)]


def _translate_error(e: Exception) -> ValueError:
    err_msg = str(e).lower()
    if "invalid" in err_msg or "authentication" in err_msg or "incorrect api key" in err_msg:
        return ValueError("Invalid API key. Please check it and try again.")
    if "insufficient_quota" in err_msg or "quota" in err_msg or "rate limit" in err_msg:
        return ValueError("API quota exhausted or rate limited. Please try again later.")
    return ValueError(f"Error calling the API: {e!s}")


async def _acall_llm(system_prompt: str, user_message: str, api_key: str, temperature: float = 0.3) -> str:
    """
    Invoke OpenAI Chat with the given messages; suspends only the awaiting operation.

    Returns:
        Assistant response content.

    Raises:
        ValueError: If API key is missing, invalid, or quota insufficient.
    """
    llm = _build_llm(api_key, temperature)
    try:
        response = await llm.ainvoke(_messages(system_prompt, user_message))
        return response.content if response.content else ""
    except Exception as e:
        raise _translate_error(e) from e


class LLMProcessor:
    """Chat access for the study engine's AI collaborators."""

    def __init__(self, api_key: str = "") -> None:
        self._api_key = api_key

    async def ainvoke(self, system_prompt: str, user_message: str, temperature: float = 0.3) -> str:
        return await _acall_llm(system_prompt, user_message, self._api_key, temperature)

    async def ainvoke_json_object(self, system_prompt: str, user_message: str, temperature: float = 0.3) -> dict[str, Any]:
        """Invoke and parse a JSON object from the answer ({} when unparseable)."""
        raw = await self.ainvoke(system_prompt, user_message, temperature)
        return _extract_json_object(raw)
