"""Centralized constants for the Cadence scheduler.

All magic numbers and policy defaults live here so every layer
imports from a single source of truth.
"""

from datetime import timedelta

# ---------- Ease ----------
STARTING_EASE = 2.5
EASE_FLOOR = 1.3
EASY_BONUS = 0.15
HARD_PENALTY = 0.15
LAPSE_PENALTY = 0.20

# ---------- Grade multipliers (review state) ----------
HARD_MULTIPLIER = 0.5
GOOD_MULTIPLIER = 1.0
EASY_MULTIPLIER = 1.3

# ---------- Fuzzing ----------
FUZZ_FACTOR = 0.05  # +/- 5%
FUZZ_MIN_DAYS = 2.5  # intervals shorter than this are never fuzzed

# ---------- Overdue credit ----------
OVERDUE_BONUS_RATIO = 0.1  # days of credit per overdue day
OVERDUE_BONUS_CAP = 0.5  # fraction of the base interval

# ---------- Deck policy defaults ----------
DEFAULT_LEARNING_STEPS = (timedelta(minutes=1), timedelta(minutes=10))
DEFAULT_RELEARNING_STEPS = (timedelta(minutes=10),)
DEFAULT_NEW_PER_DAY = 20
DEFAULT_REVIEWS_PER_DAY = 200
DEFAULT_INTERVAL_MODIFIER = 1.0
DEFAULT_LAPSE_RATIO = 0.5
GRADUATING_INTERVAL_DAYS = 1.0
EASY_INTERVAL_DAYS = 4.0
MINIMUM_INTERVAL_DAYS = 1.0

# ---------- Queue ----------
LEARN_AHEAD_MINUTES = 20
DAY_ROLLOVER_HOUR = 4
DEFAULT_TIMEZONE = "UTC"

# ---------- Statistics ----------
DEFAULT_STATS_WINDOW_DAYS = 30
DEFAULT_FORECAST_DAYS = 7
VOLATILITY_WINDOW = 10

MINUTES_PER_DAY = 24 * 60
