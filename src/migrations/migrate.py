"""SQLite schema migration runner with backups."""

from __future__ import annotations

import logging
import re
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
DB_PATH = DATA_DIR / "app.db"
MIGRATIONS_SQL_DIR = Path(__file__).resolve().parent / "sql"

LOGGER = logging.getLogger("studyengine.migrate")


class MigrationError(RuntimeError):
    """Raised when a migration fails and rollback was triggered."""


class MigrationInProgressError(RuntimeError):
    """Raised when a migration lock already exists."""


def _list_migrations() -> list[tuple[int, Path]]:
    files = sorted(MIGRATIONS_SQL_DIR.glob("[0-9][0-9][0-9]_*.sql"))
    out: list[tuple[int, Path]] = []
    for path in files:
        match = re.match(r"^(\d{3})_", path.name)
        if not match:
            continue
        out.append((int(match.group(1)), path))
    out.sort(key=lambda x: x[0])
    return out


def latest_migration_version() -> int:
    """Return the latest migration numeric version from sql files."""
    migrations = _list_migrations()
    return migrations[-1][0] if migrations else 0


def _read_schema_version(conn: sqlite3.Connection) -> int:
    cur = conn.cursor()
    # No meta table yet means version 0.
    cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='meta'")
    if cur.fetchone() is None:
        return 0
    cur.execute("SELECT value FROM meta WHERE key = 'schema_version'")
    row = cur.fetchone()
    if not row:
        return 0
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return 0


def _version_statement(version: int) -> str:
    return (
        "INSERT INTO meta(key, value) VALUES('schema_version', '%d') "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value;" % int(version)
    )


def _backup(db_path: Path, backups_dir: Path) -> None:
    if db_path.exists():
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        shutil.copy2(db_path, backups_dir / f"{db_path.stem}_{timestamp}.db")


def _acquire_lock(lock_path: Path) -> None:
    try:
        lock_path.touch(exist_ok=False)
    except FileExistsError as e:
        raise MigrationInProgressError("migration in progress") from e


def _release_lock(lock_path: Path) -> None:
    if lock_path.exists():
        try:
            lock_path.unlink()
        except OSError:
            pass


def migrate_to_latest(db_path: Path | None = None) -> int:
    """
    Run pending SQL migrations and return the final schema version.

    If the DB does not exist it is created. Each migration file runs in its
    own transaction together with the schema_version bump.
    """
    target = Path(db_path) if db_path is not None else DB_PATH
    backups_dir = target.parent / "backups"
    target.parent.mkdir(parents=True, exist_ok=True)
    backups_dir.mkdir(parents=True, exist_ok=True)
    lock_path = backups_dir / ".migrate.lock"

    migrations = _list_migrations()
    if not migrations:
        return 0
    _acquire_lock(lock_path)
    conn = sqlite3.connect(target)
    try:
        current = _read_schema_version(conn)
        pending = [(v, p) for v, p in migrations if v > current]
        if not pending:
            return current

        _backup(target, backups_dir)
        for version, sql_path in pending:
            sql = sql_path.read_text(encoding="utf-8")
            try:
                conn.executescript(f"BEGIN IMMEDIATE;\n{sql}\n{_version_statement(version)}\nCOMMIT;")
            except sqlite3.Error as e:
                conn.rollback()
                raise MigrationError(
                    f"Migration failed at {sql_path.name}. Rolled back. "
                    f"Use backups in: {backups_dir}"
                ) from e
            LOGGER.info("applied migration %s", sql_path.name)
        return pending[-1][0]
    finally:
        conn.close()
        _release_lock(lock_path)
