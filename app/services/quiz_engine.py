"""Quiz engine: ordered question loading, grading and activity persistence."""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from sqlalchemy.orm import Session
from app.auth import UserContext
from app.constants import CONFIDENCE_MIN, CONFIDENCE_MAX
from app.db.models import UserActivity
from app.db.queries import fetch_questions
from app.logging_config import get_logger, log_context
from app.services.mastery import is_correct_selection
from app.services.text import smart_clean, clean_all

logger = get_logger(__name__)


class QuizStateError(Exception):
    """Operation not allowed in the quiz's current phase."""


@dataclass
class QuizQuestion:
    """Cleaned question body as shown to the user."""
    id: str
    category: Optional[str]
    question_text: str
    options: List[str]
    correct_answers: List[str]
    explanation: str

    @classmethod
    def from_model(cls, question) -> "QuizQuestion":
        return cls(
            id=question.id,
            category=question.category,
            question_text=smart_clean(question.question_text),
            options=clean_all(question.options),
            correct_answers=clean_all(question.correct_answers),
            explanation=smart_clean(question.explanation),
        )


def format_time(total_seconds: int) -> str:
    """Format seconds as MM:SS (minutes keep counting past 59)."""
    minutes, seconds = divmod(max(0, int(total_seconds)), 60)
    return f"{minutes:02d}:{seconds:02d}"


def validate_rating(value: Optional[int]) -> Optional[int]:
    if value is not None and not (CONFIDENCE_MIN <= value <= CONFIDENCE_MAX):
        raise ValueError(f"Rating must be between {CONFIDENCE_MIN} and {CONFIDENCE_MAX}")
    return value


@dataclass
class QuizEngine:
    """
    State of one quiz attempt.

    Tracks, per question, the selected options, the confidence rating given
    before submission and the satisfaction rating given after, plus the
    activity record id created for it. The elapsed-time counter starts when
    questions are loaded and stops at submission.
    """
    questions: List[QuizQuestion]
    selections: Dict[str, List[str]] = field(default_factory=dict)
    ratings: Dict[str, Optional[int]] = field(default_factory=dict)
    satisfaction: Dict[str, Optional[int]] = field(default_factory=dict)
    activity_ids: Dict[str, str] = field(default_factory=dict)
    submitted: bool = False
    clock: Callable[[], float] = time.monotonic
    started_at: Optional[float] = None
    stopped_at: Optional[float] = None

    @classmethod
    def load(cls, db: Session, question_ids: List[str], clock: Callable[[], float] = time.monotonic) -> "QuizEngine":
        """
        Load question bodies in the order given.

        Ids unknown to the store are dropped; duplicates keep their first
        position.

        Raises:
            ValueError: if ``question_ids`` is empty
        """
        if not question_ids:
            raise ValueError("A quiz needs at least one question id")

        ordered_ids = list(dict.fromkeys(question_ids))
        by_id = {q.id: q for q in fetch_questions(db, ordered_ids)}
        questions = [QuizQuestion.from_model(by_id[qid]) for qid in ordered_ids if qid in by_id]

        missing = len(ordered_ids) - len(questions)
        if missing:
            logger.warning(f"{missing} requested questions were not found")

        engine = cls(questions=questions, clock=clock)
        if questions:
            engine.started_at = clock()
        return engine

    @classmethod
    def for_review(
        cls,
        db: Session,
        question_id: str,
        selected: List[str],
        activity_id: Optional[str] = None
    ) -> "QuizEngine":
        """Rebuild the submitted state of one question from client-held data."""
        engine = cls.load(db, [question_id])
        if not engine.questions:
            raise KeyError(question_id)
        engine.select(question_id, selected)
        engine.submitted = True
        engine.stopped_at = engine.started_at
        if activity_id:
            engine.activity_ids[question_id] = activity_id
        return engine

    def _question(self, question_id: str) -> QuizQuestion:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise KeyError(question_id)

    @property
    def elapsed_seconds(self) -> int:
        if self.started_at is None:
            return 0
        end = self.stopped_at if self.stopped_at is not None else self.clock()
        return int(end - self.started_at)

    @property
    def elapsed_display(self) -> str:
        return format_time(self.elapsed_seconds)

    def toggle_option(self, question_id: str, option: str) -> List[str]:
        """Add or remove an option from the selection. Ignored after submission."""
        if self.submitted:
            return self.selections.get(question_id, [])
        question = self._question(question_id)
        if option not in question.options:
            raise ValueError(f"{option!r} is not an option of question {question_id}")

        current = self.selections.get(question_id, [])
        if option in current:
            updated = [o for o in current if o != option]
        else:
            updated = current + [option]
        self.selections[question_id] = updated
        return updated

    def select(self, question_id: str, options: List[str]) -> None:
        """Replace the selection for a question."""
        if self.submitted:
            raise QuizStateError("Quiz already submitted")
        question = self._question(question_id)
        unknown = [o for o in options if o not in question.options]
        if unknown:
            raise ValueError(f"{unknown} are not options of question {question_id}")
        self.selections[question_id] = list(dict.fromkeys(options))

    def set_confidence(self, question_id: str, value: Optional[int]) -> None:
        if self.submitted:
            raise QuizStateError("Confidence is fixed once the quiz is submitted")
        self._question(question_id)
        self.ratings[question_id] = validate_rating(value)

    def is_correct(self, question_id: str) -> bool:
        question = self._question(question_id)
        return is_correct_selection(self.selections.get(question_id, []), question.correct_answers)

    @property
    def score(self) -> int:
        """Correct questions, rated or not."""
        return sum(1 for q in self.questions if self.is_correct(q.id))

    @property
    def percentage(self) -> float:
        if not self.questions:
            return 0.0
        return self.score / len(self.questions) * 100

    def _new_record(self, user: UserContext, question_id: str, rating: int) -> UserActivity:
        """Activity row with confidence and satisfaction both starting at ``rating``."""
        return UserActivity(
            question_id=question_id,
            user_email=user.email,
            is_correct=self.is_correct(question_id),
            user_rating=rating,
            satisfaction_rating=rating,
            submitted_answer=list(self.selections.get(question_id, [])),
        )

    def submit_all(self, db: Session, user: UserContext) -> int:
        """
        Stop the clock and persist one activity record per rated question.

        Unrated questions are graded but not stored. The satisfaction rating
        of each stored record starts out equal to its confidence.

        Returns:
            The quiz score
        """
        if self.submitted:
            raise QuizStateError("Quiz already submitted")
        self.stopped_at = self.clock()

        records = {
            q.id: self._new_record(user, q.id, self.ratings[q.id])
            for q in self.questions
            if self.ratings.get(q.id) is not None
        }
        if records:
            db.add_all(records.values())
            db.commit()
            for question_id, record in records.items():
                self.activity_ids[question_id] = record.id
                self.satisfaction[question_id] = record.user_rating

        self.submitted = True
        logger.info(
            f"Quiz submitted: {self.score}/{len(self.questions)} correct, "
            f"{len(records)} rated, {self.elapsed_display} elapsed",
            extra=log_context(user)
        )
        return self.score

    def update_satisfaction(
        self,
        db: Session,
        user: UserContext,
        question_id: str,
        value: Optional[int]
    ) -> Optional[str]:
        """
        Add, change or clear the satisfaction rating after submission.

        - no record, value given: insert a record (confidence = value)
        - record, value cleared: delete the record
        - record, value given: update satisfaction only
        - no record, value cleared: nothing to do

        An activity id that no longer names one of the user's records counts
        as no record.

        Returns:
            The activity record id now associated with the question, if any
        """
        if not self.submitted:
            raise QuizStateError("Satisfaction can only be rated after submission")
        self._question(question_id)
        validate_rating(value)
        self.satisfaction[question_id] = value

        activity_id = self.activity_ids.get(question_id)

        if activity_id and value is None:
            delete_activity(db, user, activity_id)
            self.activity_ids.pop(question_id, None)
            return None

        if activity_id and value is not None:
            if set_satisfaction(db, user, activity_id, value) is not None:
                return activity_id
            logger.warning("Activity record missing, inserting a new one",
                           extra=log_context(user, activity_id=activity_id))
            self.activity_ids.pop(question_id, None)

        if value is None:
            return None

        record = self._new_record(user, question_id, value)
        db.add(record)
        db.commit()
        self.activity_ids[question_id] = record.id
        logger.debug("Inserted activity from satisfaction rating",
                     extra=log_context(user, question_id=question_id))
        return record.id

    def results(self) -> List[Dict]:
        """Per-question outcome for the summary view."""
        return [
            {
                "question_id": q.id,
                "is_correct": self.is_correct(q.id),
                "selected": self.selections.get(q.id, []),
                "correct_answers": q.correct_answers,
                "explanation": q.explanation,
                "confidence": self.ratings.get(q.id),
                "satisfaction": self.satisfaction.get(q.id),
                "activity_id": self.activity_ids.get(q.id),
            }
            for q in self.questions
        ]


def _owned_activity(db: Session, user: UserContext, activity_id: str) -> Optional[UserActivity]:
    return db.query(UserActivity).filter(
        UserActivity.id == activity_id,
        UserActivity.user_email == user.email
    ).first()


def delete_activity(db: Session, user: UserContext, activity_id: str) -> bool:
    """Delete one of the user's activity records. Returns False if not found."""
    record = _owned_activity(db, user, activity_id)
    if record is None:
        return False
    db.delete(record)
    db.commit()
    logger.debug("Deleted activity", extra=log_context(user, activity_id=activity_id))
    return True


def set_satisfaction(db: Session, user: UserContext, activity_id: str, value: Optional[int]) -> Optional[UserActivity]:
    """Overwrite the satisfaction rating of one of the user's records."""
    record = _owned_activity(db, user, activity_id)
    if record is None:
        return None
    record.satisfaction_rating = validate_rating(value)
    db.commit()
    return record
