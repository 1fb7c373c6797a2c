"""
Global settings for the study session engine.
"""

# Model
LLM_MODEL = "gpt-4o"
GENERATION_TEMPERATURE = 0.4
JUDGE_TEMPERATURE = 0.1
REPORT_TEMPERATURE = 0.3
SOLVER_TEMPERATURE = 0.2

# Session defaults
DEFAULT_QUIZ_COUNT = 5
DEFAULT_MATCH_PAIRS = 6
DEFAULT_DURATION_SECONDS = 120
MIN_MATCH_PAIRS = 3
MAX_ITEM_COUNT = 50
TICK_INTERVAL_SECONDS = 1.0

# User-facing messages
JUDGE_FALLBACK_FEEDBACK = "could not evaluate"
CORRECT_FEEDBACK = "Correct!"
INCORRECT_FEEDBACK_TEMPLATE = "Incorrect. The answer is: {answer}"
REPORT_UNAVAILABLE_MESSAGE = "Report unavailable. Please try again later."
GENERATION_FAILED_MESSAGE = "Could not generate enough items. Try another topic."
TIME_EXPIRED_SUFFIX = " (time expired)"

# Library
LIBRARY_COLLECTIONS = ("history", "solutions", "flashcardSets", "exercises", "reports")

# Labels shown in history and report listings
MODE_LABELS = {
    "Quiz": "Learn",
    "MixedQuiz": "Mixed",
    "Match": "Match",
    "Flashcards": "Flashcards",
    "Guided": "Guided Learning",
}
