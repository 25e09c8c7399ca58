"""Centralized constants for flashdeck.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Deck hierarchy ----------
COLLECTION_SEPARATOR = "::"
MARKDOWN_SUFFIXES = (".md", ".markdown")

# ---------- Deck decoration ----------
DECK_COLORS = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#06B6D4",
    "#84CC16",
    "#F97316",
    "#EC4899",
    "#6366F1",
)
COLLECTION_ICON = "FolderIcon"
FILE_DECK_ICON = "DocumentTextIcon"

# ---------- Card validation ----------
MAX_FRONT_LENGTH = 1000
MAX_BACK_LENGTH = 5000

# ---------- Content matching ----------
CONTENT_KEY_SEPARATOR = "|||"
# Empirical calibration values, overridable via config.
FUZZY_MATCH_THRESHOLD = 0.7
FUZZY_FRONT_WEIGHT = 0.7
FUZZY_BACK_WEIGHT = 0.3
SCORE_EPSILON = 1e-9

# ---------- Memory model ----------
DEFAULT_PARAMETERS = (
    0.4072,
    1.1829,
    3.1262,
    15.4722,
    7.2102,
    0.5316,
    1.0651,
    0.0234,
    1.616,
    0.1544,
    1.0824,
    1.9813,
    0.0953,
    0.2975,
    2.2042,
    0.2407,
    2.9466,
    0.5034,
    0.6567,
)
PARAMETER_COUNT = 19
DEFAULT_DESIRED_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 36500  # ~100 years
DEFAULT_LEARNING_STEPS = (10, 30)  # minutes
DEFAULT_RELEARNING_STEPS = (15,)  # minutes
DEFAULT_EASY_BONUS = 1.3
DEFAULT_HARD_INTERVAL_FACTOR = 0.8
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
STABILITY_MIN = 0.01

# ---------- Study queue ----------
DEFAULT_NEW_CARDS_PER_DAY = 20
DEFAULT_MAX_REVIEWS_PER_DAY = 200
DEFAULT_LEARN_AHEAD_MINUTES = 20
REQUEUE_MIN_SECONDS = 30
# Empirical calibration values for the re-insertion buffer.
REQUEUE_BUFFER_MIN = 2
REQUEUE_BUFFER_MAX = 5
REORDER_EVERY = 5
REFILL_BATCH_SIZE = 50

# ---------- HTTP daemon ----------
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8787
