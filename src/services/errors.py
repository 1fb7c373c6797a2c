"""Error taxonomy shared by the session engine and its collaborators."""

from __future__ import annotations


class StudyEngineError(RuntimeError):
    """Base class for recoverable study-engine failures."""


class GenerationError(StudyEngineError):
    """Raised when the content source fails or returns too few items."""


class JudgeUnavailable(StudyEngineError):
    """Raised when a single answer cannot be judged."""


class ReportUnavailable(StudyEngineError):
    """Raised when the performance report cannot be produced."""


class PersistenceError(StudyEngineError):
    """Raised when a library write fails. Nothing was written."""


class SessionStateError(StudyEngineError):
    """Raised when an intent is issued in a state that does not accept it."""
