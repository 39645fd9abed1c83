"""Named store queries.

The two procedures the question bank exposes (``get_category_counts`` and
``search_questions_by_phrase``) live here next to the typed parameter structs
the services build instead of chaining filters ad hoc. Every function takes an
open session and returns plain values, never ORM query objects.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from sqlalchemy import func, or_, asc, desc, nulls_last
from sqlalchemy.orm import Session, joinedload
from app.db.models import Question, UserActivity


@dataclass(frozen=True)
class CategoryCount:
    """Row returned by ``get_category_counts``."""
    cat_name: Optional[str]
    q_count: int


@dataclass
class QuestionIdQuery:
    """Parameters for selecting question ids.

    ``categories`` holds raw stored category values (``None`` matches rows
    without a category). ``None`` for any list means "no restriction";
    an empty list matches nothing.
    """
    categories: Optional[List[Optional[str]]] = None
    ids: Optional[List[str]] = None
    exclude_ids: List[str] = field(default_factory=list)


@dataclass
class ActivityQuery:
    """Parameters for the history page query."""
    user_email: str
    is_correct: Optional[bool] = None
    satisfaction: Optional[int] = None
    categories: Optional[List[Optional[str]]] = None
    sort: str = "newest"
    offset: int = 0
    limit: int = 100


def _escape_like(phrase: str) -> str:
    return phrase.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _category_clause(categories: Sequence[Optional[str]]):
    named = [c for c in categories if c is not None]
    clauses = [Question.category.in_(named)]
    if len(named) != len(categories):
        clauses.append(Question.category.is_(None))
    return or_(*clauses)


def get_category_counts(db: Session) -> List[CategoryCount]:
    """Count questions per stored category value."""
    rows = db.query(
        Question.category, func.count(Question.id)
    ).group_by(Question.category).all()
    return [CategoryCount(cat_name=name, q_count=int(count)) for name, count in rows]


def search_questions_by_phrase(db: Session, phrase: str) -> List[str]:
    """Return ids of questions whose text or explanation contains ``phrase``.

    Matching is case-insensitive substring matching. Options are not searched:
    they are stored as a JSON list, not as text.
    """
    pattern = f"%{_escape_like(phrase.strip())}%"
    rows = db.query(Question.id).filter(
        or_(
            Question.question_text.ilike(pattern, escape="\\"),
            Question.explanation.ilike(pattern, escape="\\"),
        )
    ).all()
    return [row[0] for row in rows]


def select_question_ids(db: Session, query: QuestionIdQuery) -> List[str]:
    """Evaluate a QuestionIdQuery as a single SELECT.

    Id lists are sent as one IN / NOT IN list regardless of length.
    """
    q = db.query(Question.id)
    if query.categories is not None:
        q = q.filter(_category_clause(query.categories))
    if query.ids is not None:
        q = q.filter(Question.id.in_(query.ids))
    if query.exclude_ids:
        q = q.filter(Question.id.notin_(query.exclude_ids))
    return [row[0] for row in q.all()]


def fetch_questions(db: Session, ids: Sequence[str]) -> List[Question]:
    """Load question bodies for ``ids`` (store order, unknown ids skipped)."""
    if not ids:
        return []
    return db.query(Question).filter(Question.id.in_(list(ids))).all()


def fetch_activity_summary(db: Session, user_email: str):
    """All (question_id, is_correct, user_rating) rows for a user, unpaginated."""
    return db.query(
        UserActivity.question_id,
        UserActivity.is_correct,
        UserActivity.user_rating,
    ).filter(UserActivity.user_email == user_email).all()


def fetch_activity_with_category(db: Session, user_email: str):
    """All of a user's activity joined with the question category, newest first."""
    return db.query(
        UserActivity.question_id,
        UserActivity.is_correct,
        UserActivity.user_rating,
        UserActivity.satisfaction_rating,
        UserActivity.attempted_at,
        Question.category,
    ).join(
        Question, UserActivity.question_id == Question.id
    ).filter(
        UserActivity.user_email == user_email
    ).order_by(desc(UserActivity.attempted_at)).all()


HISTORY_ORDERINGS = {
    "newest": lambda: [desc(UserActivity.attempted_at)],
    "oldest": lambda: [asc(UserActivity.attempted_at)],
    "confidence": lambda: [desc(UserActivity.user_rating), desc(UserActivity.attempted_at)],
    "satisfaction": lambda: [nulls_last(desc(UserActivity.satisfaction_rating)), desc(UserActivity.attempted_at)],
}


def select_activity_page(db: Session, query: ActivityQuery) -> List[UserActivity]:
    """Evaluate an ActivityQuery: one offset page joined with question detail."""
    q = db.query(UserActivity).join(
        Question, UserActivity.question_id == Question.id
    ).options(
        joinedload(UserActivity.question)
    ).filter(UserActivity.user_email == query.user_email)

    if query.is_correct is not None:
        q = q.filter(UserActivity.is_correct == query.is_correct)
    if query.satisfaction is not None:
        q = q.filter(UserActivity.satisfaction_rating == query.satisfaction)
    if query.categories is not None:
        q = q.filter(_category_clause(query.categories))

    ordering = HISTORY_ORDERINGS.get(query.sort)
    if ordering is None:
        raise ValueError(f"Unknown sort order: {query.sort}")
    q = q.order_by(*ordering())

    return q.offset(query.offset).limit(query.limit).all()
