"""Per-user library: history, solutions, flashcard sets, exercises and reports."""

from __future__ import annotations

import copy
import dataclasses
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from config import LIBRARY_COLLECTIONS
from migrations.migrate import DB_PATH
from services.errors import PersistenceError
from services.models import FlashcardSet, HistoryItem, Mode, SavedExercise, SavedReport, SavedSolution

LOGGER = logging.getLogger("studyengine.library")

COLLECTION_TYPES: dict[str, type] = {
    "history": HistoryItem,
    "solutions": SavedSolution,
    "flashcardSets": FlashcardSet,
    "exercises": SavedExercise,
    "reports": SavedReport,
}

Documents = dict[str, list[dict[str, Any]]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _normalize_user_id(user_id: str | None) -> str | None:
    clean = str(user_id or "").strip()
    return clean or None


def _check_collection(collection: str) -> type:
    try:
        return COLLECTION_TYPES[collection]
    except KeyError:
        raise ValueError(f"Unknown library collection: {collection!r}") from None


# ---------- Backends ----------

class DocumentBackend(ABC):
    """Stores the five collections of a user as one document set."""

    @abstractmethod
    def load(self, user_id: str) -> Documents:
        """Return every stored collection for the user (missing ones may be absent)."""

    @abstractmethod
    def save(self, user_id: str, collections: Documents) -> None:
        """Write all collections together or nothing; raise PersistenceError on failure."""


class InMemoryBackend(DocumentBackend):
    def __init__(self) -> None:
        self._documents: dict[str, Documents] = {}

    def load(self, user_id: str) -> Documents:
        return copy.deepcopy(self._documents.get(user_id, {}))

    def save(self, user_id: str, collections: Documents) -> None:
        self._documents[user_id] = copy.deepcopy(collections)


class SqliteBackend(DocumentBackend):
    """One row per (user, collection); a save rewrites all rows in one transaction."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else DB_PATH

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def load(self, user_id: str) -> Documents:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT collection, payload_json FROM library_documents WHERE user_id=?",
                    (user_id,),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not load the library: {e!s}") from e
        out: Documents = {}
        for row in rows:
            try:
                payload = json.loads(row["payload_json"] or "[]")
            except json.JSONDecodeError:
                LOGGER.warning("discarding unreadable collection %s for %s", row["collection"], user_id)
                continue
            if isinstance(payload, list):
                out[row["collection"]] = payload
        return out

    def save(self, user_id: str, collections: Documents) -> None:
        now = _now_iso()
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open the library: {e!s}") from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            for name in LIBRARY_COLLECTIONS:
                conn.execute(
                    """
                    INSERT INTO library_documents(user_id, collection, payload_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, collection) DO UPDATE
                    SET payload_json=excluded.payload_json, updated_at=excluded.updated_at
                    """,
                    (user_id, name, json.dumps(collections.get(name, []), ensure_ascii=False), now),
                )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceError(f"Could not save the library: {e!s}") from e
        finally:
            conn.close()


# ---------- Store ----------

class LibraryStore:
    """
    In-memory view of one user's collections, persisted as a whole.

    Without a user identifier the store is inert: reads return nothing and
    writes are ignored. Every mutating call persists all five collections; if
    that fails the in-memory collections are left as they were.
    """

    def __init__(self, backend: DocumentBackend | None = None) -> None:
        self._backend = backend or InMemoryBackend()
        self._user_id: str | None = None
        self._collections: dict[str, tuple[Any, ...]] = {name: () for name in LIBRARY_COLLECTIONS}

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_active(self) -> bool:
        return self._user_id is not None

    def load_all(self, user_id: str | None) -> None:
        """
        Switch to ``user_id`` and load its collections; ``None`` logs out.

        Raises:
            PersistenceError: If the backend cannot be read. The store is then
                logged out so no later write can overwrite the stored library.
        """
        clean_id = _normalize_user_id(user_id)
        collections: dict[str, tuple[Any, ...]] = {name: () for name in LIBRARY_COLLECTIONS}
        if clean_id is None:
            self._user_id, self._collections = None, collections
            return
        try:
            raw = self._backend.load(clean_id)
        except PersistenceError:
            self._user_id, self._collections = None, collections
            LOGGER.error("library load failed for %s; store is logged out", clean_id)
            raise
        for name, item_type in COLLECTION_TYPES.items():
            entries = raw.get(name) if isinstance(raw.get(name), list) else []
            parsed: list[Any] = []
            for entry in entries:
                try:
                    parsed.append(item_type.from_dict(entry))
                except (KeyError, TypeError, ValueError):
                    LOGGER.warning("skipping malformed %s entry for %s", name, clean_id)
            collections[name] = tuple(parsed)
        self._user_id, self._collections = clean_id, collections
        LOGGER.info("library loaded for %s", clean_id)

    def logout(self) -> None:
        """Drop the in-memory collections without persisting anything."""
        self.load_all(None)

    # ----- reads -----

    def items(self, collection: str) -> list[Any]:
        _check_collection(collection)
        return list(self._collections[collection])

    def get(self, collection: str, item_id: str) -> Any | None:
        _check_collection(collection)
        for item in self._collections[collection]:
            if item.id == item_id:
                return item
        return None

    def query(self, collection: str, mode: Mode | None = None, newest_first: bool = True) -> list[Any]:
        """Filter by mode (where entries carry one) and sort by date (where they carry one)."""
        entries = self.items(collection)
        if mode is not None:
            entries = [e for e in entries if getattr(e, "mode", None) is mode]
        if entries and all(hasattr(e, "date") for e in entries):
            entries.sort(key=lambda e: e.date, reverse=newest_first)
        elif not newest_first:
            entries.reverse()
        return entries

    # ----- writes -----

    def append(self, collection: str, item: Any) -> None:
        """Prepend ``item`` (most recent first)."""
        item_type = _check_collection(collection)
        if not isinstance(item, item_type):
            raise ValueError(f"{collection} holds {item_type.__name__} entries.")
        if not self.is_active:
            return
        if self.get(collection, item.id) is not None:
            raise ValueError(f"Duplicate id {item.id!r} in {collection}.")
        self._commit(collection, (item, *self._collections[collection]))

    def remove(self, collection: str, item_id: str) -> bool:
        _check_collection(collection)
        if not self.is_active:
            return False
        current = self._collections[collection]
        remaining = tuple(e for e in current if e.id != item_id)
        if len(remaining) == len(current):
            return False
        self._commit(collection, remaining)
        return True

    def replace(self, collection: str, item_id: str, updated: Any) -> None:
        item_type = _check_collection(collection)
        if collection == "history":
            raise ValueError("History entries are immutable.")
        if not isinstance(updated, item_type):
            raise ValueError(f"{collection} holds {item_type.__name__} entries.")
        if not self.is_active:
            return
        existing = self.get(collection, item_id)
        if existing is None:
            raise KeyError(item_id)
        if isinstance(existing, SavedExercise) and updated.mode is not existing.mode:
            raise ValueError("An exercise's mode cannot change after it is saved.")
        if updated.id != item_id:
            updated = dataclasses.replace(updated, id=item_id)
        self._commit(collection, tuple(updated if e.id == item_id else e for e in self._collections[collection]))

    def import_items(self, collection: str, entries: Iterable[Any]) -> int:
        """Merge entries whose ids are not present yet, after the existing ones. Returns how many were added."""
        _check_collection(collection)
        if not self.is_active:
            return 0
        known = {e.id for e in self._collections[collection]}
        added = []
        for entry in entries:
            if entry.id not in known:
                known.add(entry.id)
                added.append(entry)
        if added:
            self._commit(collection, (*self._collections[collection], *added))
        return len(added)

    def persist(self) -> None:
        if not self.is_active:
            return
        self._backend.save(self._user_id, self._serialize(self._collections))  # type: ignore[arg-type]

    def _commit(self, collection: str, entries: tuple[Any, ...]) -> None:
        candidate = dict(self._collections)
        candidate[collection] = entries
        try:
            self._backend.save(self._user_id, self._serialize(candidate))  # type: ignore[arg-type]
        except PersistenceError:
            LOGGER.warning("library write to %s failed for %s", collection, self._user_id)
            raise
        self._collections = candidate

    @staticmethod
    def _serialize(collections: dict[str, tuple[Any, ...]]) -> Documents:
        return {name: [e.to_dict() for e in collections[name]] for name in LIBRARY_COLLECTIONS}
