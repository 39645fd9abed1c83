"""Per-category performance analytics, accuracy trend and activity streak."""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set
from sqlalchemy.orm import Session
from app.auth import UserContext
from app.constants import (
    DELUSION_LABELS,
    IMPOSTER_THRESHOLD,
    MISSING_RATING_FALLBACK,
    PRIORITY_URGENCY_THRESHOLD,
    SCORE_SCALE,
    TREND_DAYS,
)
from app.db.queries import fetch_activity_with_category
from app.services.categories import load_category_index, normalize_category


class SortMode(str, Enum):
    """Category ordering for the breakdown."""
    ALPHA = "alpha"
    WORST = "worst"
    BEST = "best"
    URGENCY = "urgency"
    MASTERY = "mastery"
    FRUSTRATION = "frustration"


@dataclass
class ActivityPoint:
    """The fields of an activity record the analytics need."""
    question_id: str
    is_correct: bool
    user_rating: Optional[int]
    satisfaction_rating: Optional[int]
    attempted_at: datetime
    category: Optional[str]


@dataclass
class CategoryStat:
    """Aggregate performance for one category. Never persisted."""
    name: str
    volume: int
    accuracy: float
    avg_confidence: float
    avg_satisfaction: Optional[float]
    seen_count: int
    mastered_count: int
    total_in_db: int
    delusion_score: float
    urgency: float

    @property
    def mastery_ratio(self) -> float:
        return self.mastered_count / self.total_in_db if self.total_in_db else 0.0

    @property
    def delusion_label(self) -> str:
        return delusion_label(self.delusion_score)

    @property
    def is_priority(self) -> bool:
        return self.urgency > PRIORITY_URGENCY_THRESHOLD

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.update(
            mastery_ratio=self.mastery_ratio,
            delusion_label=self.delusion_label,
            is_priority=self.is_priority,
        )
        return data


@dataclass
class TrendPoint:
    day: date
    accuracy: float
    attempts: int

    @property
    def label(self) -> str:
        return f"{self.day.strftime('%b')} {self.day.day}"


@dataclass
class AnalyticsReport:
    total: int = 0
    streak: int = 0
    categories: List[CategoryStat] = field(default_factory=list)
    trend: List[TrendPoint] = field(default_factory=list)


@dataclass
class _Accumulator:
    total: int = 0
    correct: int = 0
    rating_sum: float = 0.0
    satisfaction_sum: int = 0
    satisfaction_count: int = 0
    seen_ids: Set[str] = field(default_factory=set)
    mastered_ids: Set[str] = field(default_factory=set)


def delusion_label(score: float) -> str:
    """Describe how self-reported confidence compares with accuracy."""
    for bound, label in DELUSION_LABELS:
        if score > bound:
            return label
    if score < IMPOSTER_THRESHOLD:
        return "Imposter Syndrome"
    return "Self-Aware"


def compute_delusion(avg_confidence: float, accuracy: float) -> float:
    return avg_confidence * SCORE_SCALE - accuracy


def compute_urgency(avg_confidence: float, accuracy: float) -> float:
    return avg_confidence - accuracy / SCORE_SCALE


def current_streak(days: Set[date], today: date) -> int:
    """Consecutive days with activity, counting back from today."""
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def accuracy_trend(points: Iterable[ActivityPoint], days: int = TREND_DAYS) -> List[TrendPoint]:
    """Accuracy for the most recent ``days`` activity days, oldest first."""
    per_day: Dict[date, List[int]] = {}
    for point in points:
        bucket = per_day.setdefault(point.attempted_at.date(), [0, 0])
        bucket[0] += 1
        if point.is_correct:
            bucket[1] += 1

    recent = sorted(per_day, reverse=True)[:days]
    return [
        TrendPoint(day=day, accuracy=per_day[day][1] / per_day[day][0] * 100, attempts=per_day[day][0])
        for day in sorted(recent)
    ]


def build_category_stats(points: Iterable[ActivityPoint], totals: Dict[str, int]) -> List[CategoryStat]:
    """
    Derive CategoryStat rows from activity points.

    Args:
        points: Activity records joined with their question category
        totals: Question count per normalized category label

    Returns:
        One CategoryStat per category with at least one attempt
    """
    acc: Dict[str, _Accumulator] = {}
    for point in points:
        bucket = acc.setdefault(normalize_category(point.category), _Accumulator())
        bucket.total += 1
        bucket.rating_sum += point.user_rating if point.user_rating is not None else MISSING_RATING_FALLBACK
        bucket.seen_ids.add(point.question_id)
        if point.satisfaction_rating is not None:
            bucket.satisfaction_sum += point.satisfaction_rating
            bucket.satisfaction_count += 1
        if point.is_correct:
            bucket.correct += 1
            bucket.mastered_ids.add(point.question_id)

    stats = []
    for name, bucket in acc.items():
        accuracy = bucket.correct / bucket.total * 100
        avg_confidence = bucket.rating_sum / bucket.total
        seen_count = len(bucket.seen_ids)
        stats.append(CategoryStat(
            name=name,
            volume=bucket.total,
            accuracy=accuracy,
            avg_confidence=avg_confidence,
            avg_satisfaction=(
                bucket.satisfaction_sum / bucket.satisfaction_count if bucket.satisfaction_count else None
            ),
            seen_count=seen_count,
            mastered_count=len(bucket.mastered_ids),
            total_in_db=totals.get(name) or seen_count,
            delusion_score=compute_delusion(avg_confidence, accuracy),
            urgency=compute_urgency(avg_confidence, accuracy),
        ))
    return stats


def sort_categories(stats: List[CategoryStat], mode: SortMode) -> List[CategoryStat]:
    """Return a sorted copy; the input list is left untouched."""
    if mode == SortMode.ALPHA:
        return sorted(stats, key=lambda s: s.name.lower())
    if mode == SortMode.WORST:
        return sorted(stats, key=lambda s: s.accuracy)
    if mode == SortMode.BEST:
        return sorted(stats, key=lambda s: s.accuracy, reverse=True)
    if mode == SortMode.URGENCY:
        return sorted(stats, key=lambda s: s.urgency, reverse=True)
    if mode == SortMode.MASTERY:
        return sorted(stats, key=lambda s: s.mastery_ratio, reverse=True)
    # Frustration: least satisfying first, unrated categories last
    return sorted(stats, key=lambda s: (s.avg_satisfaction is None, s.avg_satisfaction or 0))


def filter_by_name(stats: List[CategoryStat], search: Optional[str]) -> List[CategoryStat]:
    """Display-only case-insensitive name filter."""
    if not search or not search.strip():
        return stats
    needle = search.strip().lower()
    return [s for s in stats if needle in s.name.lower()]


def build_analytics(points: List[ActivityPoint], totals: Dict[str, int], today: date) -> AnalyticsReport:
    """Pure aggregation of activity points into the analytics report."""
    if not points:
        return AnalyticsReport()
    return AnalyticsReport(
        total=len(points),
        streak=current_streak({p.attempted_at.date() for p in points}, today),
        categories=build_category_stats(points, totals),
        trend=accuracy_trend(points),
    )


def load_analytics(db: Session, user: UserContext, today: Optional[date] = None) -> AnalyticsReport:
    """Fetch the user's activity and category totals, then aggregate."""
    totals = load_category_index(db).totals
    points = [ActivityPoint(*row) for row in fetch_activity_with_category(db, user.email)]
    return build_analytics(points, totals, today or datetime.utcnow().date())
