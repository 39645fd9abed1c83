"""Question selection: category, phrase and performance filtering."""
import random
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session
from app.auth import UserContext
from app.constants import (
    CONFIDENCE_MIN,
    CONFIDENCE_MAX,
    DEFAULT_QUESTION_LIMIT,
    MAX_QUESTION_LIMIT,
    PHRASE_CACHE_MAX_ENTRIES,
)
from app.db.queries import (
    QuestionIdQuery,
    fetch_activity_summary,
    search_questions_by_phrase,
    select_question_ids,
)
from app.logging_config import get_logger, log_context
from app.services.categories import CategoryIndex, load_category_index
from app.services.mastery import QuestionPerformance, aggregate_performance

logger = get_logger(__name__)


def clean_phrases(phrases: List[str]) -> List[str]:
    return [p.strip() for p in phrases if p and p.strip()]


class PhraseMode(str, Enum):
    """How results of several phrase searches are combined."""
    AND = "AND"  # intersection
    OR = "OR"    # union


class SelectionCriteria(BaseModel):
    """Filters for building a quiz.

    The mutator methods mirror the selector form: unseen-only and the
    rating/mastery filters clear each other, and phrases and categories are
    mutually exclusive.
    """
    included_categories: List[str] = Field(default_factory=list)
    excluded_categories: List[str] = Field(default_factory=list)
    phrases: List[str] = Field(default_factory=list)
    phrase_mode: PhraseMode = PhraseMode.OR
    unseen_only: bool = False
    min_rating: int = Field(CONFIDENCE_MIN, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)
    max_rating: int = Field(CONFIDENCE_MAX, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)
    not_mastered_only: bool = False
    limit: int = Field(DEFAULT_QUESTION_LIMIT, ge=1, le=MAX_QUESTION_LIMIT)

    @field_validator("phrases")
    @classmethod
    def drop_blank_phrases(cls, v):
        return clean_phrases(v)

    @model_validator(mode="after")
    def check_filter_conflicts(self):
        if self.min_rating > self.max_rating:
            raise ValueError("min_rating cannot exceed max_rating")
        if self.unseen_only and self.performance_filters_active:
            raise ValueError("unseen_only cannot be combined with rating or mastery filters")
        return self

    @property
    def performance_filters_active(self) -> bool:
        return (
            self.not_mastered_only
            or self.min_rating != CONFIDENCE_MIN
            or self.max_rating != CONFIDENCE_MAX
        )

    @property
    def phrase_search_active(self) -> bool:
        return bool(self.phrases)

    def set_unseen_only(self, checked: bool) -> None:
        self.unseen_only = checked
        if checked:
            self.not_mastered_only = False
            self.min_rating = CONFIDENCE_MIN
            self.max_rating = CONFIDENCE_MAX

    def set_not_mastered_only(self, checked: bool) -> None:
        self.not_mastered_only = checked
        if checked:
            self.unseen_only = False

    def set_rating_range(self, min_rating: Optional[int] = None, max_rating: Optional[int] = None) -> None:
        if min_rating is not None:
            self.min_rating = min_rating
        if max_rating is not None:
            self.max_rating = max_rating
        self.unseen_only = False

    def toggle_category(self, category: str) -> None:
        """Cycle a category: neutral -> included -> excluded -> neutral."""
        if category in self.included_categories:
            self.included_categories = [c for c in self.included_categories if c != category]
            self.excluded_categories = self.excluded_categories + [category]
        elif category in self.excluded_categories:
            self.excluded_categories = [c for c in self.excluded_categories if c != category]
        else:
            self.included_categories = self.included_categories + [category]
        self.phrases = []

    def clear_categories(self) -> None:
        self.included_categories = []
        self.excluded_categories = []

    def set_phrases(self, phrases: List[str], mode: Optional[PhraseMode] = None) -> None:
        self.phrases = clean_phrases(phrases)
        if mode is not None:
            self.phrase_mode = mode
        if self.phrases:
            self.clear_categories()


@dataclass
class SelectionResult:
    """Outcome of a selection. ``no_results`` is set instead of raising."""
    question_ids: List[str] = field(default_factory=list)
    pool_size: int = 0

    @property
    def no_results(self) -> bool:
        return not self.question_ids


class PhraseSearchCache:
    """Per-session cache of phrase search results.

    Keys are (session key, normalized phrase); each session keeps at most
    ``max_entries`` phrases, oldest evicted first.
    """

    def __init__(self, max_entries: int = PHRASE_CACHE_MAX_ENTRIES):
        self.max_entries = max_entries
        self._sessions: Dict[str, "OrderedDict[str, FrozenSet[str]]"] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(phrase: str) -> str:
        return " ".join(phrase.lower().split())

    def get(self, session_key: str, phrase: str) -> Optional[FrozenSet[str]]:
        with self._lock:
            entries = self._sessions.get(session_key)
            if entries is None:
                return None
            key = self.normalize(phrase)
            if key not in entries:
                return None
            entries.move_to_end(key)
            return entries[key]

    def put(self, session_key: str, phrase: str, ids: FrozenSet[str]) -> None:
        with self._lock:
            entries = self._sessions.setdefault(session_key, OrderedDict())
            entries[self.normalize(phrase)] = ids
            entries.move_to_end(self.normalize(phrase))
            while len(entries) > self.max_entries:
                entries.popitem(last=False)

    def clear(self, session_key: Optional[str] = None) -> None:
        with self._lock:
            if session_key is None:
                self._sessions.clear()
            else:
                self._sessions.pop(session_key, None)


phrase_cache = PhraseSearchCache()
"""Process-wide cache shared by all requests, partitioned by session."""


def resolve_categories(
    index: CategoryIndex,
    included: List[str],
    excluded: List[str]
) -> Optional[List[str]]:
    """
    Resolve the target category labels.

    Returns:
        The included labels if any, else every known label minus the
        excluded ones, else None meaning "all categories".
    """
    if included:
        return list(dict.fromkeys(included))
    if excluded:
        excluded_set = set(excluded)
        return [name for name in index.names if name not in excluded_set]
    return None


def lookup_phrase(
    db: Session,
    phrase: str,
    cache: Optional[PhraseSearchCache],
    session_key: Optional[str]
) -> FrozenSet[str]:
    """Search one phrase, consulting the session cache first."""
    if cache is not None and session_key is not None:
        cached = cache.get(session_key, phrase)
        if cached is not None:
            logger.debug(f"Phrase cache hit for {phrase!r}")
            return cached

    ids = frozenset(search_questions_by_phrase(db, phrase))
    if cache is not None and session_key is not None:
        cache.put(session_key, phrase, ids)
    return ids


def combine_phrase_results(results: List[FrozenSet[str]], mode: PhraseMode) -> Set[str]:
    if not results:
        return set()
    if mode == PhraseMode.AND:
        return set(frozenset.intersection(*results))
    return set(frozenset.union(*results))


def filter_by_performance(
    stats: Dict[str, QuestionPerformance],
    min_rating: int,
    max_rating: int,
    not_mastered_only: bool
) -> List[str]:
    """Seen question ids whose average rating is in range (and never correct, if asked)."""
    matches = []
    for question_id, perf in stats.items():
        if not (min_rating <= perf.average_rating <= max_rating):
            continue
        if not_mastered_only and perf.mastered:
            continue
        matches.append(question_id)
    return matches


def shuffle_and_truncate(ids: List[str], limit: int, rng: random.Random = None) -> List[str]:
    """Uniform (Fisher-Yates) shuffle, then keep the first ``limit`` ids."""
    pool = list(ids)
    (rng or random).shuffle(pool)
    return pool[:limit]


def find_questions(
    db: Session,
    user: UserContext,
    criteria: SelectionCriteria,
    cache: Optional[PhraseSearchCache] = None,
    session_key: Optional[str] = None,
    rng: random.Random = None
) -> SelectionResult:
    """
    Build a randomized list of question ids matching the criteria.

    Process:
    1. Resolve categories (ignored when phrase search is active)
    2. Combine per-phrase id sets with AND/OR
    3. Aggregate the user's full activity history per question
    4. Unseen only: drop every seen question
    5. Otherwise keep seen questions whose average rating is in range
       (and never answered correctly, if asked)
    6. Shuffle and truncate to the limit

    Args:
        db: Database session
        user: Caller identity
        criteria: Validated selection filters
        cache: Phrase cache, None to always query
        session_key: Cache partition for this caller
        rng: Random source (tests pass a seeded one)

    Returns:
        SelectionResult; empty with ``no_results`` when nothing matches
    """
    query = QuestionIdQuery()

    if criteria.phrase_search_active:
        results = [lookup_phrase(db, phrase, cache, session_key) for phrase in criteria.phrases]
        pool = combine_phrase_results(results, criteria.phrase_mode)
        logger.debug(
            f"Phrase search {criteria.phrases} ({criteria.phrase_mode.value}) matched {len(pool)} questions",
            extra=log_context(user)
        )
        if not pool:
            return SelectionResult()
        query.ids = sorted(pool)
    elif criteria.included_categories or criteria.excluded_categories:
        index = load_category_index(db)
        labels = resolve_categories(index, criteria.included_categories, criteria.excluded_categories)
        query.categories = index.raw_for(labels)

    stats = aggregate_performance(fetch_activity_summary(db, user.email))

    if criteria.unseen_only:
        query.exclude_ids = sorted(stats)
    else:
        # Seen questions only; the default 1-4 range keeps every seen question
        target = filter_by_performance(
            stats, criteria.min_rating, criteria.max_rating, criteria.not_mastered_only
        )
        if not target:
            logger.info("No seen questions match the rating or mastery filters", extra=log_context(user))
            return SelectionResult()
        if query.ids is not None:
            phrase_pool = set(query.ids)
            target = [question_id for question_id in target if question_id in phrase_pool]
            if not target:
                return SelectionResult()
        query.ids = sorted(target)

    candidates = select_question_ids(db, query)
    if not candidates:
        return SelectionResult()

    chosen = shuffle_and_truncate(sorted(candidates), criteria.limit, rng)
    logger.info(
        f"Selected {len(chosen)} of {len(candidates)} candidate questions",
        extra=log_context(user)
    )
    return SelectionResult(question_ids=chosen, pool_size=len(candidates))
