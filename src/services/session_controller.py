"""
Timed study session state machine shared by the Quiz, MixedQuiz and Match modes.

States: SETUP -> RUNNING -> (PAUSED <-> RUNNING) -> COMPLETED -> REPORTED.
Everything runs on one asyncio event loop; the only suspension points are
clock ticks and awaited calls to the content generator, judge and report
generator.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from config import (
    CORRECT_FEEDBACK,
    DEFAULT_DURATION_SECONDS,
    DEFAULT_MATCH_PAIRS,
    DEFAULT_QUIZ_COUNT,
    GENERATION_FAILED_MESSAGE,
    JUDGE_FALLBACK_FEEDBACK,
    REPORT_UNAVAILABLE_MESSAGE,
)
from services.answer_judge import AnswerJudge
from services.clock import Clock
from services.content_generator import ContentGenerator
from services.errors import GenerationError, JudgeUnavailable, PersistenceError, ReportUnavailable, SessionStateError
from services.library_store import LibraryStore
from services.models import (
    AnswerRecord,
    ExerciseItem,
    HistoryDetails,
    HistoryItem,
    MatchPair,
    MatchSummary,
    MixedItem,
    Mode,
    ReportArtifact,
    SavedExercise,
    SavedReport,
    SessionSnapshot,
    Verdict,
)
from services.report_generator import ReportGenerator
from services.session_modes import STRATEGIES, MatchStrategy, MixedQuizStrategy, ModeStrategy, QuizStrategy

LOGGER = logging.getLogger("studyengine.session")


class SessionState(str, Enum):
    SETUP = "setup"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    REPORTED = "reported"


@dataclass(frozen=True)
class Controls:
    can_submit: bool
    can_navigate: bool


@dataclass(frozen=True)
class MatchCard:
    text: str
    matched: bool
    pair_index: int


@dataclass(frozen=True)
class MatchBoard:
    terms: tuple[MatchCard, ...]
    definitions: tuple[MatchCard, ...]


@dataclass(frozen=True)
class SessionResult:
    topic: str
    score: int
    total: int
    elapsed_seconds: int
    timed_out: bool
    records: tuple[AnswerRecord, ...]
    history_item: HistoryItem


class SessionController:
    """One exercise mode's session: progress, score, timer and pause snapshot."""

    def __init__(
        self,
        strategy: ModeStrategy,
        clock: Clock,
        content_generator: ContentGenerator,
        judge: AnswerJudge,
        report_generator: ReportGenerator,
        library: LibraryStore,
        rng: random.Random | None = None,
    ) -> None:
        self._strategy = strategy
        self._clock = clock
        self._generator = content_generator
        self._judge = judge
        self._reporter = report_generator
        self._library = library
        self._rng = rng or random.Random()

        self._state = SessionState.SETUP
        self._token = 0
        self._tick_handle: int | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._snapshot: SessionSnapshot | None = None
        self._last_config: tuple[str, int, int] | None = None
        self._generating = False
        self.message = ""
        self._clear_session()

    # ---------- Views ----------

    @property
    def mode(self):
        return self._strategy.mode

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def items(self) -> tuple[ExerciseItem, ...]:
        return self._items

    @property
    def cursor_index(self) -> int:
        return self._cursor

    @property
    def time_remaining(self) -> int:
        return self._time_remaining

    @property
    def initial_duration(self) -> int:
        return self._initial_duration

    @property
    def records(self) -> tuple[AnswerRecord, ...]:
        return tuple(self._records)

    @property
    def score(self) -> int:
        if not self._strategy.cursor_based:
            return len(self._matched)
        return sum(1 for r in self._records if r.is_correct)

    @property
    def matched_pairs(self) -> int:
        return len(self._matched)

    @property
    def total_pairs(self) -> int:
        return len(self._items) if not self._strategy.cursor_based else 0

    @property
    def snapshot(self) -> SessionSnapshot | None:
        return self._snapshot

    @property
    def result(self) -> SessionResult | None:
        return self._result

    @property
    def report(self) -> ReportArtifact | None:
        return self._report

    @property
    def report_error(self) -> str:
        return self._report_error

    @property
    def history_error(self) -> PersistenceError | None:
        return self._history_error

    @property
    def controls(self) -> Controls:
        live = self._state is SessionState.RUNNING and not self._pausing and not self._expired_while_judging
        idle = live and not self._judging
        if not self._strategy.cursor_based:
            return Controls(can_submit=idle, can_navigate=False)
        answered = self._cursor in self._answered
        return Controls(can_submit=idle and not answered, can_navigate=idle)

    @property
    def current_item(self) -> ExerciseItem | None:
        if not self._strategy.cursor_based or self._state not in (SessionState.RUNNING, SessionState.PAUSED):
            return None
        return self._items[self._cursor]

    def current_options(self) -> list[str]:
        """Options of the current multiple-choice item, freshly shuffled on every call."""
        item = self.current_item
        if not isinstance(item, MixedItem) or not item.options:
            return []
        options = list(item.options)
        self._rng.shuffle(options)
        return options

    @property
    def board(self) -> MatchBoard | None:
        if self._strategy.cursor_based or not self._items:
            return None
        return MatchBoard(
            terms=tuple(
                MatchCard(self._items[i].term, i in self._matched, i)  # type: ignore[union-attr]
                for i in self._term_order
            ),
            definitions=tuple(
                MatchCard(self._items[i].definition, i in self._matched, i)  # type: ignore[union-attr]
                for i in self._definition_order
            ),
        )

    # ---------- Starting ----------

    def start(self, items: Sequence[ExerciseItem], topic: str, duration_seconds: int) -> None:
        """
        Start a session, or resume the paused one when its topic matches.

        Raises:
            SessionStateError: If a session is already running.
            ValueError: If the items do not fit this mode or the duration is not positive.
        """
        if self._state is SessionState.RUNNING:
            raise SessionStateError("A session is already running.")
        clean_topic = (topic or "").strip()
        if self._snapshot is not None and self._snapshot.topic == clean_topic:
            self._resume_snapshot()
            return
        valid_items = self._strategy.validate_items(items)
        if int(duration_seconds) <= 0:
            raise ValueError("Duration must be a positive number of seconds.")
        self._snapshot = None
        self._begin_fresh(valid_items, clean_topic, int(duration_seconds))

    async def generate_and_start(
        self,
        topic: str,
        count: int | None = None,
        duration_seconds: int = DEFAULT_DURATION_SECONDS,
    ) -> bool:
        """
        Generate items for ``topic`` and start. Returns False, with ``message``
        set, when generation fails; a paused session then stays PAUSED and
        anything else goes back to SETUP.
        """
        if count is None:
            count = DEFAULT_QUIZ_COUNT if self._strategy.cursor_based else DEFAULT_MATCH_PAIRS
        if self._state is SessionState.RUNNING:
            raise SessionStateError("A session is already running.")
        if self._generating:
            LOGGER.debug("generate_and_start ignored: generation already in flight")
            return False
        clean_topic = (topic or "").strip()
        if not clean_topic:
            self.message = "Please enter a topic."
            return False
        if self._snapshot is not None and self._snapshot.topic == clean_topic:
            self._resume_snapshot()
            return True

        self._last_config = (clean_topic, int(count), int(duration_seconds))
        self._generating = True
        try:
            items = await self._generator.generate(clean_topic, int(count), self.mode)
        except GenerationError as e:
            LOGGER.warning("generation failed for %s (%s): %s", clean_topic, self.mode.value, e)
            if self._state not in (SessionState.PAUSED, SessionState.RUNNING):
                self._reset_to_setup(keep_snapshot=True)
            self.message = str(e) or GENERATION_FAILED_MESSAGE
            return False
        finally:
            self._generating = False
        self.message = ""
        self.start(items, clean_topic, duration_seconds)
        return True

    def start_saved(self, exercise: SavedExercise, duration_seconds: int) -> None:
        """Play a saved exercise of this controller's mode."""
        if exercise.mode is not self.mode:
            raise ValueError(f"Exercise {exercise.name!r} is a {exercise.mode.value} exercise.")
        self._last_config = (exercise.topic, len(exercise.data), int(duration_seconds))
        self.start(exercise.data, exercise.topic, duration_seconds)

    async def regenerate(self) -> bool:
        """Discard the current session and start again with freshly generated items."""
        if self._last_config is None:
            self.message = "No previous configuration to generate again."
            return False
        topic, count, duration = self._last_config
        self._reset_to_setup(keep_snapshot=False)
        return await self.generate_and_start(topic, count, duration)

    def play_again(self) -> None:
        """Replay the finished session's items with a fresh shuffle and no records."""
        if self._state not in (SessionState.COMPLETED, SessionState.REPORTED):
            raise SessionStateError("Only a finished session can be played again.")
        self._begin_fresh(self._items, self._topic, self._initial_duration)

    # ---------- Answering ----------

    async def submit_answer(self, value: Any) -> AnswerRecord | None:
        """
        Submit an answer for the current item.

        Returns the appended record, or None when the submission was rejected
        locally (blank answer) or ignored (controls disabled).
        """
        self._require_running()
        if not self._strategy.cursor_based:
            raise SessionStateError("Match sessions take attempt_match().")
        if not self.controls.can_submit:
            LOGGER.debug("submit ignored at item %s: controls disabled", self._cursor)
            return None
        index = self._cursor
        item = self._items[index]
        answer = self._strategy.normalize_submission(item, value)
        if answer is None:
            self.message = "Please enter an answer."
            return None
        self.message = ""

        if not self._strategy.needs_judge(item):
            record = self._append_record(item, index, answer, self._strategy.judge_locally(item, answer))
            self._after_answer()
            return record

        token = self._token
        self._judging = True
        self._idle.clear()
        try:
            verdict = await self._evaluate(item, answer)
            if token != self._token:
                LOGGER.debug("dropping verdict for a discarded session")
                return None
            record = self._append_record(item, index, answer, verdict)
        finally:
            if token == self._token:
                self._judging = False
                self._idle.set()
        self._after_answer()
        return record

    def next(self) -> bool:
        """Move forward; from the last item this finishes the session."""
        self._require_cursor_session()
        if not self.controls.can_navigate:
            LOGGER.debug("next ignored: navigation disabled")
            return False
        if self._cursor >= len(self._items) - 1:
            self._complete(timed_out=False)
            return True
        self._cursor += 1
        self._item_started_at = self._clock.now()
        return True

    def prev(self) -> bool:
        self._require_cursor_session()
        if not self.controls.can_navigate or self._cursor == 0:
            return False
        self._cursor -= 1
        self._item_started_at = self._clock.now()
        return True

    def attempt_match(self, term: str, definition: str) -> bool | None:
        """
        Pair a term with a definition.

        Returns True for a match, False for a wrong pairing, None when the
        attempt was ignored (matched card or controls disabled).
        """
        self._require_running()
        if self._strategy.cursor_based:
            raise SessionStateError("Only Match sessions take attempt_match().")
        if not self.controls.can_submit:
            return None
        index = next((i for i, p in enumerate(self._items) if isinstance(p, MatchPair) and p.term == term), None)
        if index is None:
            raise ValueError(f"Unknown term: {term!r}")
        # Definition cards with the same text are interchangeable; one must still be open.
        open_definitions = [i for i in self._definition_order if i not in self._matched]
        if index in self._matched or not any(
            self._items[i].definition == definition for i in open_definitions  # type: ignore[union-attr]
        ):
            return None
        pair = self._items[index]
        if pair.definition != definition:  # type: ignore[union-attr]
            return False
        self._matched.add(index)
        self._append_record(pair, index, definition, Verdict(True, CORRECT_FEEDBACK))
        self._item_started_at = self._clock.now()
        if len(self._matched) == len(self._items):
            self._complete(timed_out=False)
        return True

    # ---------- Pause / resume / give up ----------

    async def pause(self) -> SessionSnapshot | None:
        """
        Stop the clock, let an in-flight judge call land its record, then
        snapshot. Returns None when nothing was paused.
        """
        if self._state is not SessionState.RUNNING or self._pausing:
            return None
        self._pausing = True
        self._stop_clock()
        try:
            await self._idle.wait()
        finally:
            self._pausing = False
        if self._state is not SessionState.RUNNING:
            return None
        self._snapshot = self._take_snapshot()
        self._state = SessionState.PAUSED
        LOGGER.info("session paused: %s (%s) at %ss", self._topic, self.mode.value, self._time_remaining)
        return self._snapshot

    def resume(self) -> bool:
        if self._state is not SessionState.PAUSED or self._snapshot is None:
            return False
        self._resume_snapshot()
        return True

    def give_up(self) -> None:
        """Discard the session and any snapshot without writing history."""
        if self._state is SessionState.SETUP and self._snapshot is None:
            return
        LOGGER.info("session discarded: %s (%s)", self._topic, self.mode.value)
        self._reset_to_setup(keep_snapshot=False)

    # ---------- After completion ----------

    async def wait_report(self) -> ReportArtifact | None:
        """Await the report of the finished session, starting it if needed."""
        if self._result is None:
            return None
        if self._report_task is None:
            self._report_task = asyncio.ensure_future(self._generate_report(self._token))
        return await self._report_task

    def retry_history_save(self) -> bool:
        if self._pending_history is None:
            return True
        return self._save_history()

    def save_report(self) -> SavedReport:
        """Store the rendered report in the library. PersistenceError propagates."""
        if self._report is None:
            raise SessionStateError("There is no report to save.")
        saved = SavedReport(topic=self._report.topic, mode=self._report.mode, content=self._report.content)
        self._library.append("reports", saved)
        return saved

    def save_exercise(self, name: str = "") -> SavedExercise:
        """Store the finished session's items as a reusable exercise."""
        if self._result is None:
            raise SessionStateError("Only a finished session can be saved.")
        exercise = SavedExercise(
            name=(name or "").strip() or f"Exercise: {self._topic}",
            mode=self.mode,
            topic=self._topic,
            data=self._items,
        )
        self._library.append("exercises", exercise)
        return exercise

    # ---------- Internals ----------

    def _clear_session(self) -> None:
        self._items: tuple[ExerciseItem, ...] = ()
        self._topic = ""
        self._cursor = 0
        self._time_remaining = 0
        self._initial_duration = 0
        self._records: list[AnswerRecord] = []
        self._answered: set[int] = set()
        self._matched: set[int] = set()
        self._term_order: list[int] = []
        self._definition_order: list[int] = []
        self._item_started_at = 0.0
        self._judging = False
        self._pausing = False
        self._expired_while_judging = False
        self._result: SessionResult | None = None
        self._report: ReportArtifact | None = None
        self._report_error = ""
        self._report_task: asyncio.Future | None = None
        self._pending_history: HistoryItem | None = None
        self._history_error: PersistenceError | None = None

    def _reset_to_setup(self, keep_snapshot: bool) -> None:
        self._stop_clock()
        self._token += 1
        self._clear_session()
        self._idle.set()
        if not keep_snapshot:
            self._snapshot = None
        self._state = SessionState.SETUP

    def _begin_fresh(self, items: tuple[ExerciseItem, ...], topic: str, duration: int) -> None:
        self._stop_clock()
        self._token += 1
        self._clear_session()
        self._idle.set()
        self._items = items
        self._topic = topic
        self._time_remaining = duration
        self._initial_duration = duration
        self._shuffle_board()
        self._run()
        LOGGER.info("session started: %s (%s, %s items, %ss)", topic, self.mode.value, len(items), duration)

    def _resume_snapshot(self) -> None:
        snap = self._snapshot
        assert snap is not None
        self._stop_clock()
        self._token += 1
        self._clear_session()
        self._idle.set()
        self._items = snap.items
        self._topic = snap.topic
        self._cursor = snap.cursor_index
        self._time_remaining = snap.time_remaining
        self._initial_duration = snap.initial_duration
        self._records = list(snap.records)
        self._answered = {r.item_index for r in snap.records} if self._strategy.cursor_based else set()
        self._matched = set(snap.matched_indices)
        self._shuffle_board()
        self._snapshot = None
        self._run()
        LOGGER.info("session resumed: %s (%s) at %ss", self._topic, self.mode.value, self._time_remaining)

    def _shuffle_board(self) -> None:
        if self._strategy.cursor_based:
            return
        self._term_order = list(range(len(self._items)))
        self._definition_order = list(range(len(self._items)))
        self._rng.shuffle(self._term_order)
        self._rng.shuffle(self._definition_order)

    def _run(self) -> None:
        self._state = SessionState.RUNNING
        self._item_started_at = self._clock.now()
        self._tick_handle = self._clock.start(self._on_tick)

    def _stop_clock(self) -> None:
        if self._tick_handle is not None:
            self._clock.stop(self._tick_handle)
            self._tick_handle = None

    def _on_tick(self) -> None:
        if self._state is not SessionState.RUNNING or self._pausing:
            return
        self._time_remaining = max(0, self._time_remaining - 1)
        if self._time_remaining > 0:
            return
        if self._judging:
            # The pending answer is recorded first; completion follows it.
            self._expired_while_judging = True
            self._stop_clock()
            return
        self._complete(timed_out=True)

    async def _evaluate(self, item: ExerciseItem, answer: str) -> Verdict:
        question = getattr(item, "question", "")
        canonical = getattr(item, "answer", "")
        try:
            return await self._judge.evaluate(question, canonical, answer)
        except JudgeUnavailable as e:
            LOGGER.warning("judge unavailable for item %s: %s", self._cursor, e)
            return Verdict(is_correct=False, feedback=JUDGE_FALLBACK_FEEDBACK)

    def _append_record(self, item: ExerciseItem, index: int, answer: str, verdict: Verdict) -> AnswerRecord:
        record = AnswerRecord(
            item=item,
            user_answer=answer,
            is_correct=verdict.is_correct,
            feedback=verdict.feedback,
            time_taken_seconds=max(0.0, self._clock.now() - self._item_started_at),
            item_index=index,
        )
        self._records.append(record)
        self._answered.add(index)
        return record

    def _after_answer(self) -> None:
        if self._state is not SessionState.RUNNING:
            return
        if len(self._answered) == len(self._items):
            self._complete(timed_out=False)
        elif self._expired_while_judging:
            self._complete(timed_out=True)

    def _take_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            mode=self.mode,
            items=self._items,
            topic=self._topic,
            score=self.score,
            time_remaining=self._time_remaining,
            initial_duration=self._initial_duration,
            records=tuple(self._records),
            cursor_index=self._cursor,
            matched_indices=frozenset(self._matched),
            matched_terms=frozenset(self._items[i].term for i in self._matched),  # type: ignore[union-attr]
            matched_definitions=frozenset(self._items[i].definition for i in self._matched),  # type: ignore[union-attr]
        )

    def _complete(self, timed_out: bool) -> None:
        self._stop_clock()
        self._state = SessionState.COMPLETED
        self._expired_while_judging = False
        elapsed = self._initial_duration - self._time_remaining
        score = self.score
        total = len(self._items)
        per_question = tuple(round(r.time_taken_seconds, 1) for r in self._records) if self._strategy.cursor_based else ()
        history = HistoryItem(
            mode=self.mode,
            topic=self._topic,
            score=self._strategy.history_score(score, total, elapsed, timed_out),
            details=HistoryDetails(total_time=elapsed, time_per_question=per_question),
        )
        self._result = SessionResult(
            topic=self._topic,
            score=score,
            total=total,
            elapsed_seconds=elapsed,
            timed_out=timed_out,
            records=tuple(self._records),
            history_item=history,
        )
        LOGGER.info("session completed: %s (%s) score=%s timed_out=%s", self._topic, self.mode.value, history.score, timed_out)
        self._pending_history = history
        self._save_history()
        self._schedule_report()

    def _save_history(self) -> bool:
        try:
            self._library.append("history", self._pending_history)
        except PersistenceError as e:
            LOGGER.warning("history entry not saved: %s", e)
            self._history_error = e
            return False
        self._pending_history = None
        self._history_error = None
        return True

    def _schedule_report(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._report_task = loop.create_task(self._generate_report(self._token))

    async def _generate_report(self, token: int) -> ReportArtifact | None:
        result = self._result
        if result is None:
            return None
        try:
            if self._strategy.cursor_based:
                artifact = await self._reporter.generate(result.topic, self.mode, records=result.records)
            else:
                summary = MatchSummary(
                    pairs=tuple(self._items),  # type: ignore[arg-type]
                    elapsed_seconds=result.elapsed_seconds,
                    completed=not result.timed_out,
                    matched_pairs=result.score,
                )
                artifact = await self._reporter.generate(result.topic, self.mode, match_summary=summary)
        except ReportUnavailable as e:
            LOGGER.warning("report unavailable for %s: %s", result.topic, e)
            if token == self._token:
                self._report_error = REPORT_UNAVAILABLE_MESSAGE
            return None
        if token != self._token:
            return None
        self._report = artifact
        if self._state is SessionState.COMPLETED:
            self._state = SessionState.REPORTED
        return artifact

    def _require_running(self) -> None:
        if self._state is not SessionState.RUNNING:
            raise SessionStateError(f"No running session (state: {self._state.value}).")

    def _require_cursor_session(self) -> None:
        self._require_running()
        if not self._strategy.cursor_based:
            raise SessionStateError("Match sessions have no cursor.")


def quiz_controller(**deps: Any) -> SessionController:
    return SessionController(QuizStrategy(), **deps)


def mixed_quiz_controller(**deps: Any) -> SessionController:
    return SessionController(MixedQuizStrategy(), **deps)


def match_controller(**deps: Any) -> SessionController:
    return SessionController(MatchStrategy(), **deps)


def controller_for(mode: Mode, **deps: Any) -> SessionController:
    """Controller for a session mode; Flashcards and Guided have no timed session."""
    try:
        strategy = STRATEGIES[mode]
    except KeyError:
        raise ValueError(f"{mode.value} has no timed session.") from None
    return SessionController(strategy(), **deps)
