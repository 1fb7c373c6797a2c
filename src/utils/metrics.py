"""Timing of AI calls (generate, judge, report, solve), recorded in SQLite."""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

# Resolved at module load time; tests can monkeypatch this symbol.
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
DB_PATH: Path = _PROJECT_ROOT / "data" / "app.db"


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def log_metric(operation: str, elapsed_s: float, outcome: str = "ok", **meta: Any) -> None:
    """Persist one timed AI call.

    Never raises: metric failures must not interrupt a running session.

    Args:
        operation: "generate", "judge", "report" or "solve".
        elapsed_s: Wall-clock seconds the call took.
        outcome: "ok", or the name of the error the call ended with.
        **meta: Stored as JSON (e.g. mode="Quiz", requested=5).
    """
    try:
        meta_json = json.dumps(meta, ensure_ascii=False, default=str)
        with _connect() as conn:
            conn.execute(
                """
                INSERT INTO operation_metrics (operation, outcome, elapsed_s, meta_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (operation, outcome, round(elapsed_s, 3), meta_json, _now_iso()),
            )
    except Exception:  # noqa: BLE001
        pass


@contextmanager
def timed(operation: str, **meta: Any) -> Iterator[dict[str, Any]]:
    """Time the block and log it on exit, failed or not.

    The yielded dict is the metric's meta; the block may add keys to it
    (for instance how many valid items a generation produced).
    """
    started = time.perf_counter()
    outcome = "ok"
    try:
        yield meta
    except Exception as e:
        outcome = type(e).__name__
        raise
    finally:
        log_metric(operation, time.perf_counter() - started, outcome, **meta)
