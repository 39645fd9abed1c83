"""Application-wide constants and configuration values.

This module centralizes the magic numbers used by the selector, quiz engine,
analytics and history services.
"""

# Rating scale shared by confidence and satisfaction
CONFIDENCE_MIN = 1
"""Lowest confidence/satisfaction rating."""

CONFIDENCE_MAX = 4
"""Highest confidence/satisfaction rating."""

MISSING_RATING_FALLBACK = 2.5
"""Rating assumed for a record with no confidence value (midpoint of the scale)."""

SCORE_SCALE = 100 / CONFIDENCE_MAX
"""Multiplier mapping an average confidence onto the 0-100 accuracy range."""

# Question selection
DEFAULT_QUESTION_LIMIT = 5
"""Number of questions drawn when the caller does not specify a limit."""

MAX_QUESTION_LIMIT = 100
"""Upper bound on questions per quiz."""

DEFAULT_CATEGORY = "General"
"""Label used for questions whose category is empty or whitespace only."""

PHRASE_CACHE_MAX_ENTRIES = 256
"""Cached phrase lookups kept per session before the oldest are evicted."""

# Analytics
TREND_DAYS = 7
"""Number of most recent activity days shown in the accuracy trend."""

PRIORITY_URGENCY_THRESHOLD = 1.0
"""Categories with urgency above this are flagged as review priorities."""

DELUSION_LABELS = (
    (30, "Highly Delusional"),
    (10, "Overconfident"),
)
"""(lower bound exclusive, label) pairs checked in order for positive delusion scores."""

IMPOSTER_THRESHOLD = -15
"""Delusion score below which a category is labelled 'Imposter Syndrome'."""

# History
HISTORY_PAGE_SIZE = 100
"""Activity records per history page."""

# Identity
ANONYMOUS_EMAIL = "anonymous"
"""Email recorded on activity submitted without a signed-in user."""

# Rate Limiting
DEFAULT_RATE_LIMIT = "100/minute"
"""Default request budget per client address."""

QUIZ_SUBMIT_RATE_LIMIT = "20/minute"
"""Maximum number of quiz submissions allowed per minute per client."""

SATISFACTION_RATE_LIMIT = "120/minute"
"""Maximum number of satisfaction edits allowed per minute per client."""
