"""Tests for the matching game session (board, attempts, timeout with partial credit)."""

from __future__ import annotations

import asyncio
import random

import pytest

from conftest import FakeGenerator
from services.errors import GenerationError, SessionStateError
from services.models import MatchPair, Mode
from services.session_controller import SessionState, match_controller


def _make(clock, judge, reporter, library, generator=None):
    return match_controller(
        clock=clock,
        content_generator=generator or FakeGenerator([]),
        judge=judge,
        report_generator=reporter,
        library=library,
        rng=random.Random(3),
    )


class TestBoard:
    def test_board_shows_every_card_unmatched(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        board = ctl.board
        assert sorted(c.text for c in board.terms) == ["CO2", "H2O", "NaCl"]
        assert sorted(c.text for c in board.definitions) == ["Carbon dioxide", "Table salt", "Water"]
        assert not any(c.matched for c in board.terms + board.definitions)
        assert ctl.current_item is None
        assert ctl.total_pairs == 3

    def test_duplicate_terms_rejected(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        with pytest.raises(ValueError):
            ctl.start(chemistry_pairs + [chemistry_pairs[0]], "Chemistry", 60)

    def test_quiz_intents_are_rejected(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        with pytest.raises(SessionStateError):
            asyncio.run(ctl.submit_answer("Water"))
        with pytest.raises(SessionStateError):
            ctl.next()


class TestAttempts:
    def test_wrong_pair_is_not_recorded(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        assert ctl.attempt_match("H2O", "Table salt") is False
        assert ctl.records == ()
        assert ctl.matched_pairs == 0

    def test_correct_pair_marks_both_cards(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        assert ctl.attempt_match("H2O", "Water") is True
        board = ctl.board
        assert [c.text for c in board.terms if c.matched] == ["H2O"]
        assert [c.text for c in board.definitions if c.matched] == ["Water"]
        assert ctl.matched_pairs == 1
        assert len(ctl.records) == 1
        assert judge.calls == []

    def test_matched_cards_ignore_further_attempts(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        ctl.attempt_match("H2O", "Water")
        assert ctl.attempt_match("H2O", "Water") is None
        assert ctl.attempt_match("NaCl", "Water") is None
        assert len(ctl.records) == 1

    def test_shared_definitions_can_all_be_matched(self, clock, judge, reporter, library):
        pairs = [
            MatchPair(term="Dog", definition="Mammal"),
            MatchPair(term="Cat", definition="Mammal"),
            MatchPair(term="Trout", definition="Fish"),
        ]
        ctl = _make(clock, judge, reporter, library)
        ctl.start(pairs, "Animals", 60)
        assert ctl.attempt_match("Dog", "Mammal") is True
        assert ctl.attempt_match("Trout", "Mammal") is False
        assert ctl.attempt_match("Cat", "Mammal") is True
        assert [c.matched for c in ctl.board.definitions if c.text == "Mammal"] == [True, True]
        assert ctl.attempt_match("Trout", "Fish") is True
        assert ctl.matched_pairs == ctl.total_pairs == 3
        assert ctl.state is SessionState.COMPLETED
        assert ctl.result.timed_out is False

    def test_board_cards_carry_pair_index(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        for card in ctl.board.terms:
            assert chemistry_pairs[card.pair_index].term == card.text
        for card in ctl.board.definitions:
            assert chemistry_pairs[card.pair_index].definition == card.text

    def test_unknown_term_raises(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        with pytest.raises(ValueError):
            ctl.attempt_match("O3", "Ozone")

    def test_matched_count_never_decreases(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        attempts = [
            ("H2O", "Table salt"),
            ("H2O", "Water"),
            ("NaCl", "Carbon dioxide"),
            ("H2O", "Water"),
            ("NaCl", "Table salt"),
        ]
        seen = []
        for term, definition in attempts:
            ctl.attempt_match(term, definition)
            seen.append(ctl.matched_pairs)
        assert seen == sorted(seen)
        assert seen[-1] == 2


class TestCompletion:
    def test_all_pairs_matched_records_elapsed_time(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)

        async def scenario():
            ctl.start(chemistry_pairs, "Chemistry", 30)
            clock.advance(4)
            for pair in chemistry_pairs:
                ctl.attempt_match(pair.term, pair.definition)
            return await ctl.wait_report()

        report = asyncio.run(scenario())
        assert report is not None
        assert ctl.state is SessionState.REPORTED
        history = library.items("history")[0]
        assert history.mode is Mode.MATCH
        assert history.score == "4s"
        assert history.details.total_time == 4
        summary = reporter.calls[0]["match_summary"]
        assert summary.completed is True
        assert summary.matched_pairs == 3

    def test_timeout_gives_partial_credit(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)

        async def scenario():
            ctl.start(chemistry_pairs, "Chemistry", 20)
            ctl.attempt_match("CO2", "Carbon dioxide")
            clock.advance(20)
            await ctl.wait_report()

        asyncio.run(scenario())
        assert ctl.result.timed_out is True
        assert ctl.score == 1
        assert library.items("history")[0].score == "1/3 (time expired)"
        summary = reporter.calls[0]["match_summary"]
        assert summary.completed is False
        assert summary.matched_pairs == 1
        assert summary.elapsed_seconds == 20

    def test_attempts_after_completion_rejected(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 5)
        clock.advance(5)
        with pytest.raises(SessionStateError):
            ctl.attempt_match("H2O", "Water")


class TestPauseAndGeneration:
    def test_pause_resume_keeps_matches(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)

        async def scenario():
            ctl.start(chemistry_pairs, "Chemistry", 60)
            ctl.attempt_match("NaCl", "Table salt")
            clock.advance(9)
            return await ctl.pause()

        snap = asyncio.run(scenario())
        assert snap.matched_terms == frozenset({"NaCl"})
        assert snap.matched_definitions == frozenset({"Table salt"})
        assert snap.matched_indices == frozenset({1})

        assert ctl.resume() is True
        assert ctl.time_remaining == 51
        assert ctl.matched_pairs == 1
        assert [c.text for c in ctl.board.terms if c.matched] == ["NaCl"]
        assert ctl.attempt_match("NaCl", "Table salt") is None

    def test_too_few_pairs_from_generator(self, clock, judge, reporter, library):
        generator = FakeGenerator(GenerationError("A matching game needs at least 3 pairs."))
        ctl = _make(clock, judge, reporter, library, generator)
        assert asyncio.run(ctl.generate_and_start("Chemistry", 2, 60)) is False
        assert ctl.state is SessionState.SETUP
        assert generator.calls == [("Chemistry", 2, Mode.MATCH)]

    def test_play_again_clears_matches(self, clock, judge, reporter, library, chemistry_pairs):
        ctl = _make(clock, judge, reporter, library)
        ctl.start(chemistry_pairs, "Chemistry", 60)
        for pair in chemistry_pairs:
            ctl.attempt_match(pair.term, pair.definition)
        ctl.play_again()
        assert ctl.matched_pairs == 0
        assert not any(c.matched for c in ctl.board.terms)
