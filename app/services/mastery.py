"""Answer grading and per-question performance aggregation."""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional
from app.constants import MISSING_RATING_FALLBACK


class MasteryState(str, Enum):
    """Mastery state for a question."""
    UNSEEN = "unseen"
    LEARNING = "learning"
    MASTERED = "mastered"


def is_correct_selection(selected: Iterable[str], correct_answers: Iterable[str]) -> bool:
    """
    Grade a multi-select answer.

    The answer is correct iff the selected options and the correct answers
    are the same set. Order and repeated entries do not matter, and an empty
    selection is only correct for a question with no correct answers.

    Args:
        selected: Options the user submitted
        correct_answers: The question's correct options

    Returns:
        True if the answer is correct
    """
    return set(selected) == set(correct_answers)


@dataclass
class QuestionPerformance:
    """Aggregate of one user's activity on one question."""
    total_rating: float = 0.0
    count: int = 0
    mastered: bool = False

    @property
    def average_rating(self) -> float:
        return self.total_rating / self.count if self.count else 0.0

    @property
    def state(self) -> MasteryState:
        if self.count == 0:
            return MasteryState.UNSEEN
        return MasteryState.MASTERED if self.mastered else MasteryState.LEARNING

    def record(self, is_correct: bool, rating: Optional[int]) -> None:
        self.total_rating += rating if rating is not None else MISSING_RATING_FALLBACK
        self.count += 1
        if is_correct:
            self.mastered = True


def aggregate_performance(rows) -> Dict[str, QuestionPerformance]:
    """
    Fold activity rows into per-question performance.

    Args:
        rows: Iterable of (question_id, is_correct, user_rating) tuples

    Returns:
        Dictionary keyed by question_id; only seen questions appear
    """
    stats: Dict[str, QuestionPerformance] = {}
    for question_id, is_correct, rating in rows:
        stats.setdefault(question_id, QuestionPerformance()).record(bool(is_correct), rating)
    return stats
