"""Shared pytest fixtures for the study engine test suite."""

from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest

# Ensure src/ is on the path so all service imports resolve.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

MIGRATIONS_SQL_DIR = SRC_DIR / "migrations" / "sql"

from services.clock import ManualClock  # noqa: E402
from services.errors import JudgeUnavailable, ReportUnavailable  # noqa: E402
from services.library_store import InMemoryBackend, LibraryStore  # noqa: E402
from services.models import MatchPair, Mode, OpenQuestion, ReportArtifact, Verdict  # noqa: E402


def _apply_migrations(db_path: str) -> None:
    """Run all SQL migration files in order against *db_path*."""
    conn = sqlite3.connect(db_path)
    try:
        sql_files = sorted(MIGRATIONS_SQL_DIR.glob("[0-9][0-9][0-9]_*.sql"))
        for sql_file in sql_files:
            conn.executescript(sql_file.read_text(encoding="utf-8"))
        conn.execute(
            "INSERT INTO meta(key, value) VALUES('schema_version', ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (str(len(sql_files)),),
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """Temporary SQLite DB with all migrations applied.

    Monkeypatches DB_PATH so metrics and the library backend use an isolated DB.
    """
    db_file = str(tmp_path / "test_app.db")
    _apply_migrations(db_file)

    import migrations.migrate as migrate_mod
    import utils.metrics as metrics_mod

    monkeypatch.setattr(migrate_mod, "DB_PATH", Path(db_file))
    monkeypatch.setattr(metrics_mod, "DB_PATH", Path(db_file))

    def _patched_connect_metrics():
        conn = sqlite3.connect(db_file)
        conn.row_factory = sqlite3.Row
        return conn

    monkeypatch.setattr(metrics_mod, "_connect", _patched_connect_metrics)
    return db_file


@pytest.fixture(autouse=True)
def _no_metrics_db(request, monkeypatch):
    """Keep log_metric away from the real data/app.db unless a test asks for tmp_db."""
    if "tmp_db" in request.fixturenames:
        return
    import utils.metrics as metrics_mod

    def _refuse():
        raise sqlite3.OperationalError("metrics disabled in tests")

    monkeypatch.setattr(metrics_mod, "_connect", _refuse)


# ── Fake AI collaborators ─────────────────────────────────────


class FakeGenerator:
    """Returns queued item lists (or raises queued errors) in call order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[tuple[str, int, Mode]] = []

    async def generate(self, topic, count, mode):
        self.calls.append((topic, count, mode))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeJudge:
    """Judges by case-insensitive equality; can be told to fail or to block until released."""

    def __init__(self, fail: bool = False, gated: bool = False):
        self.fail = fail
        self.gated = gated
        self.calls: list[tuple[str, str, str]] = []
        self._gates: list = []

    async def evaluate(self, question, canonical, candidate):
        self.calls.append((question, canonical, candidate))
        if self.gated:
            gate = asyncio.Event()
            self._gates.append(gate)
            await gate.wait()
        if self.fail:
            raise JudgeUnavailable("judge offline")
        ok = candidate.strip().lower() == canonical.strip().lower()
        return Verdict(is_correct=ok, feedback="Correct!" if ok else f"Expected {canonical}")

    def release(self):
        while self._gates:
            self._gates.pop(0).set()


class FakeReporter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[dict] = []

    async def generate(self, topic, mode, records=(), match_summary=None):
        self.calls.append({"topic": topic, "mode": mode, "records": tuple(records), "match_summary": match_summary})
        if self.fail:
            raise ReportUnavailable("report service down")
        return ReportArtifact(topic=topic, mode=mode, content=f"## Performance report\n\n**Topic:** {topic}\n")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def library():
    store = LibraryStore(InMemoryBackend())
    store.load_all("student-1")
    return store


@pytest.fixture
def judge():
    return FakeJudge()


@pytest.fixture
def reporter():
    return FakeReporter()


@pytest.fixture
def capitals():
    return [
        OpenQuestion(question="Capital of France?", answer="Paris"),
        OpenQuestion(question="Capital of Italy?", answer="Rome"),
        OpenQuestion(question="Capital of Spain?", answer="Madrid"),
    ]


@pytest.fixture
def chemistry_pairs():
    return [
        MatchPair(term="H2O", definition="Water"),
        MatchPair(term="NaCl", definition="Table salt"),
        MatchPair(term="CO2", definition="Carbon dioxide"),
    ]
