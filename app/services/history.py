"""Paginated activity history with satisfaction edits and deletion."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from app.auth import UserContext
from app.constants import HISTORY_PAGE_SIZE
from app.db.models import UserActivity
from app.db.queries import ActivityQuery, select_activity_page
from app.logging_config import get_logger, log_context
from app.services.categories import load_category_index, normalize_category
from app.services.quiz_engine import delete_activity, set_satisfaction, validate_rating
from app.services.text import smart_clean, clean_all

logger = get_logger(__name__)


class StatusFilter(str, Enum):
    ALL = "all"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    CONFIDENCE = "confidence"
    SATISFACTION = "satisfaction"


@dataclass
class HistoryFilters:
    status: StatusFilter = StatusFilter.ALL
    satisfaction: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    sort: SortOrder = SortOrder.NEWEST


@dataclass
class HistoryPage:
    items: List[Dict]
    page: int
    has_more: bool

    @property
    def next_page(self) -> Optional[int]:
        return self.page + 1 if self.has_more else None


def serialize_activity(record: UserActivity) -> Dict:
    """Activity record with its cleaned question detail."""
    question = record.question
    return {
        "id": record.id,
        "question_id": record.question_id,
        "attempted_at": record.attempted_at.isoformat(),
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
        "is_correct": record.is_correct,
        "user_rating": record.user_rating,
        "satisfaction_rating": record.satisfaction_rating,
        "submitted_answer": clean_all(record.submitted_answer),
        "question": {
            "question_text": smart_clean(question.question_text),
            "options": clean_all(question.options),
            "correct_answers": clean_all(question.correct_answers),
            "explanation": smart_clean(question.explanation),
            "category": normalize_category(question.category),
        },
    }


def fetch_history(
    db: Session,
    user: UserContext,
    filters: HistoryFilters,
    page: int = 0,
    page_size: int = HISTORY_PAGE_SIZE
) -> HistoryPage:
    """
    Read one offset page of the user's activity.

    Pages are ``page * page_size`` offsets, so records inserted while paging
    can shift later pages.
    """
    if page < 0:
        raise ValueError("page must be >= 0")

    query = ActivityQuery(
        user_email=user.email,
        satisfaction=validate_rating(filters.satisfaction),
        sort=filters.sort.value,
        offset=page * page_size,
        limit=page_size,
    )
    if filters.status != StatusFilter.ALL:
        query.is_correct = filters.status == StatusFilter.CORRECT
    if filters.categories:
        query.categories = load_category_index(db).raw_for(filters.categories)

    records = select_activity_page(db, query)
    return HistoryPage(
        items=[serialize_activity(r) for r in records],
        page=page,
        has_more=len(records) == page_size,
    )


def rate_satisfaction(db: Session, user: UserContext, activity_id: str, score: Optional[int]) -> Optional[UserActivity]:
    """
    Apply a satisfaction click from the history list.

    Choosing the score already stored, or clearing it, deletes the record;
    any other score replaces the stored one.

    Returns:
        The updated record, or None if it was deleted

    Raises:
        LookupError: if the record does not exist or belongs to someone else
    """
    validate_rating(score)
    record = db.query(UserActivity).filter(
        UserActivity.id == activity_id,
        UserActivity.user_email == user.email
    ).first()
    if record is None:
        raise LookupError(activity_id)

    if score is None or record.satisfaction_rating == score:
        delete_activity(db, user, activity_id)
        logger.info("Satisfaction toggled off, activity removed",
                    extra=log_context(user, activity_id=activity_id))
        return None

    return set_satisfaction(db, user, activity_id, score)


def remove_activity(db: Session, user: UserContext, activity_id: str) -> None:
    """Delete one record. Raises LookupError if it is not the user's."""
    if not delete_activity(db, user, activity_id):
        raise LookupError(activity_id)
