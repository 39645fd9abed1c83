"""Quiz operation endpoints."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from app.auth import UserContext, get_current_user
from app.constants import CONFIDENCE_MIN, CONFIDENCE_MAX, QUIZ_SUBMIT_RATE_LIMIT, SATISFACTION_RATE_LIMIT
from app.db.database import get_db
from app.logging_config import get_logger, log_context
from app.rate_limit import limiter
from app.services.categories import normalize_category
from app.services.quiz_engine import QuizEngine, QuizStateError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/quiz", tags=["quiz"])


class LoadQuizRequest(BaseModel):
    """Request body for loading a quiz."""
    question_ids: List[str] = Field(..., min_length=1, description="Ordered question ids")


class AnswerSubmission(BaseModel):
    """One question's answer inside a quiz submission."""
    question_id: str = Field(..., min_length=1)
    selected: List[str] = Field(default_factory=list, description="Selected option texts")
    confidence: Optional[int] = Field(None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)


class SubmitQuizRequest(BaseModel):
    """Request body for submitting a whole quiz."""
    answers: List[AnswerSubmission] = Field(..., min_length=1)
    elapsed_seconds: int = Field(0, ge=0, description="Time on the quiz clock when submitted")


class SatisfactionUpdate(BaseModel):
    """Request body for a post-submission satisfaction edit."""
    question_id: str = Field(..., min_length=1)
    selected: List[str] = Field(default_factory=list)
    activity_id: Optional[str] = None
    value: Optional[int] = Field(None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)


@router.post("/load")
async def load_quiz(
    body: LoadQuizRequest,
    db: Session = Depends(get_db)
):
    """
    Load question bodies in the requested order.

    Correct answers and explanations are withheld until submission.
    """
    engine = QuizEngine.load(db, body.question_ids)
    if not engine.questions:
        raise HTTPException(status_code=404, detail="None of the requested questions exist")

    return {
        "question_count": len(engine.questions),
        "questions": [
            {
                "question_id": q.id,
                "question_number": i + 1,
                "category": normalize_category(q.category),
                "question_text": q.question_text,
                "options": q.options,
                "multi_select": True,
            }
            for i, q in enumerate(engine.questions)
        ]
    }


@router.post("/submit")
@limiter.limit(QUIZ_SUBMIT_RATE_LIMIT)
async def submit_quiz(
    submission: SubmitQuizRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Grade every answer and store one activity record per rated question.

    Returns:
    - score, question_count, percentage (unrated questions count too)
    - per-question results with correct answers and explanations
    - activity_ids: question_id -> stored record id
    - elapsed: MM:SS
    """
    engine = QuizEngine.load(db, [a.question_id for a in submission.answers])
    if not engine.questions:
        raise HTTPException(status_code=404, detail="None of the submitted questions exist")
    engine.started_at = engine.clock() - submission.elapsed_seconds

    known_ids = {q.id for q in engine.questions}
    try:
        for answer in submission.answers:
            if answer.question_id not in known_ids:
                continue
            engine.select(answer.question_id, answer.selected)
            engine.set_confidence(answer.question_id, answer.confidence)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        score = engine.submit_all(db, user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error submitting quiz: {e}", exc_info=True, extra=log_context(user))
        raise HTTPException(status_code=500, detail="Error submitting quiz")

    return {
        "score": score,
        "question_count": len(engine.questions),
        "percentage": round(engine.percentage, 1),
        "elapsed": engine.elapsed_display,
        "results": engine.results(),
        "activity_ids": engine.activity_ids,
    }


@router.post("/satisfaction")
@limiter.limit(SATISFACTION_RATE_LIMIT)
async def update_satisfaction(
    update: SatisfactionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Add, change or clear a satisfaction rating after submission.

    Returns the activity id now associated with the question (null once the
    record has been removed).
    """
    try:
        engine = QuizEngine.for_review(db, update.question_id, update.selected, update.activity_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Question not found")
    except (ValueError, QuizStateError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        activity_id = engine.update_satisfaction(db, user, update.question_id, update.value)
    except Exception as e:
        db.rollback()
        logger.error(
            f"Error updating satisfaction: {e}",
            exc_info=True,
            extra=log_context(user, question_id=update.question_id)
        )
        raise HTTPException(status_code=500, detail="Error updating satisfaction")

    return {
        "question_id": update.question_id,
        "activity_id": activity_id,
        "satisfaction": update.value,
    }
