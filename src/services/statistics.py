"""Aggregates over the history collection for the statistics page."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from services.models import HistoryItem

_FRACTION_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)")


@dataclass(frozen=True)
class ModeStats:
    mode: str
    sessions: int
    average_accuracy: float | None
    best_accuracy: float | None


@dataclass(frozen=True)
class HistoryStats:
    total_sessions: int
    average_accuracy: float
    best_accuracy: float
    total_study_seconds: float
    current_streak: int
    longest_streak: int
    modes: tuple[ModeStats, ...]
    daily_activity: tuple[tuple[str, int], ...]
    top_topics: tuple[tuple[str, int], ...]


def score_accuracy(score: str) -> float | None:
    """Percentage for ``"a/b"`` scores (with or without a suffix); None otherwise."""
    match = _FRACTION_RE.match(score or "")
    if not match:
        return None
    correct, total = int(match.group(1)), int(match.group(2))
    if total == 0:
        return None
    return round(100.0 * correct / total, 1)


def _day(iso: str) -> date | None:
    try:
        parsed = datetime.fromisoformat(iso)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def compute_streaks(days: Iterable[date], today: date) -> tuple[int, int]:
    """(current, longest) runs of consecutive active days; current is 0 once a day is missed."""
    unique = sorted(set(days))
    if not unique:
        return 0, 0
    longest = current = 1
    for prev, curr in zip(unique, unique[1:]):
        if curr - prev == timedelta(days=1):
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    if (today - unique[-1]).days > 1:
        current = 0
    return current, longest


def summarize_history(history: Iterable[HistoryItem], today: date | None = None, top_n: int = 10) -> HistoryStats:
    entries = list(history)
    today = today or datetime.now(timezone.utc).date()

    accuracies: list[float] = []
    by_mode: dict[str, list[float | None]] = {}
    total_seconds = 0.0
    days: list[date] = []
    for item in entries:
        accuracy = score_accuracy(item.score)
        if accuracy is not None:
            accuracies.append(accuracy)
        by_mode.setdefault(item.mode.value, []).append(accuracy)
        if item.details is not None:
            total_seconds += item.details.total_time
        day = _day(item.date)
        if day is not None:
            days.append(day)

    modes = []
    for mode, values in sorted(by_mode.items()):
        scored = [v for v in values if v is not None]
        modes.append(
            ModeStats(
                mode=mode,
                sessions=len(values),
                average_accuracy=round(sum(scored) / len(scored), 1) if scored else None,
                best_accuracy=max(scored) if scored else None,
            )
        )

    current, longest = compute_streaks(days, today)
    activity = Counter(d.isoformat() for d in days)
    topics = Counter(item.topic.strip() for item in entries if item.topic.strip())
    return HistoryStats(
        total_sessions=len(entries),
        average_accuracy=round(sum(accuracies) / len(accuracies), 1) if accuracies else 0.0,
        best_accuracy=max(accuracies) if accuracies else 0.0,
        total_study_seconds=total_seconds,
        current_streak=current,
        longest_streak=longest,
        modes=tuple(modes),
        daily_activity=tuple(sorted(activity.items())),
        top_topics=tuple(topics.most_common(top_n)),
    )
