"""Minimal stability self-check for migrations, the session engine and the library."""

from __future__ import annotations

import asyncio
import random
import sqlite3
import sys
import uuid
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from migrations.migrate import DB_PATH, latest_migration_version, migrate_to_latest
from services.answer_judge import judge_fill_blank
from services.clock import ManualClock
from services.library_store import LibraryStore, SqliteBackend
from services.models import MatchPair, OpenQuestion, ReportArtifact
from services.session_controller import SessionState, match_controller, quiz_controller


class _OfflineJudge:
    async def evaluate(self, question: str, canonical: str, candidate: str):
        return judge_fill_blank(candidate, canonical)


class _OfflineReporter:
    async def generate(self, topic, mode, records=(), match_summary=None):
        return ReportArtifact(topic=topic, mode=mode, content=f"## Performance report\n\n**Topic:** {topic}\n")


class _NoGenerator:
    async def generate(self, topic, count, mode):
        raise AssertionError("self check never generates content")


def check_migrations_idempotent() -> None:
    first = migrate_to_latest()
    second = migrate_to_latest()
    latest = latest_migration_version()
    assert second == first, f"migrate_to_latest not idempotent: {first} vs {second}"
    assert second == latest, f"schema version not latest: {second} vs {latest}"

    conn = sqlite3.connect(DB_PATH)
    try:
        row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        assert row is not None, "meta.schema_version row missing"
        assert int(row[0]) == latest, f"DB schema_version != latest ({row[0]} vs {latest})"
    finally:
        conn.close()


def _cleanup_user(user_id: str) -> None:
    conn = sqlite3.connect(DB_PATH)
    try:
        conn.execute("DELETE FROM library_documents WHERE user_id=?", [user_id])
        conn.commit()
    finally:
        conn.close()


def check_sessions_and_library() -> None:
    user_id = f"selfcheck_{uuid.uuid4().hex[:8]}"
    library = LibraryStore(SqliteBackend(DB_PATH))
    library.load_all(user_id)
    clock = ManualClock()
    deps = dict(
        clock=clock,
        content_generator=_NoGenerator(),
        judge=_OfflineJudge(),
        report_generator=_OfflineReporter(),
        library=library,
        rng=random.Random(0),
    )
    try:
        quiz = quiz_controller(**deps)
        items = [OpenQuestion("2 + 2?", "4"), OpenQuestion("Capital of Japan?", "Tokyo")]

        async def run_quiz() -> None:
            quiz.start(items, "Self check", 30)
            await quiz.submit_answer("4")
            snap = await quiz.pause()
            assert snap is not None and len(snap.records) == 1, "pause snapshot missing the answer"
            assert quiz.resume(), "resume failed"
            quiz.next()
            await quiz.submit_answer("Kyoto")
            assert await quiz.wait_report() is not None, "report missing"

        asyncio.run(run_quiz())
        assert quiz.state is SessionState.REPORTED, f"quiz ended in {quiz.state}"
        quiz.save_report()
        quiz.save_exercise()

        match = match_controller(**deps)
        match.start([MatchPair("a", "1"), MatchPair("b", "2"), MatchPair("c", "3")], "Self check", 10)
        match.attempt_match("a", "1")
        clock.advance(10)
        assert match.result is not None and match.result.timed_out, "match did not time out"

        reloaded = LibraryStore(SqliteBackend(DB_PATH))
        reloaded.load_all(user_id)
        scores = [h.score for h in reloaded.items("history")]
        assert scores == ["1/3 (time expired)", "1/2"], f"unexpected history: {scores}"
        assert len(reloaded.items("reports")) == 1, "report not persisted"
        assert len(reloaded.items("exercises")) == 1, "exercise not persisted"
    finally:
        # Always clean up the test user to prevent DB pollution across runs.
        _cleanup_user(user_id)


def main() -> None:
    check_migrations_idempotent()
    check_sessions_and_library()
    print("self_check: OK")


if __name__ == "__main__":
    main()
