"""Question selection endpoints."""
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from app.auth import UserContext, get_current_user
from app.db.database import get_db
from app.logging_config import get_logger, log_context
from app.services.categories import load_category_index
from app.services.selector import SelectionCriteria, find_questions, phrase_cache

logger = get_logger(__name__)

router = APIRouter(prefix="/api/selector", tags=["selector"])

SESSION_ID_KEY = "sid"


def get_session_key(request: Request) -> str:
    """Stable id for this browser session, created on first use."""
    sid = request.session.get(SESSION_ID_KEY)
    if not sid:
        sid = uuid.uuid4().hex
        request.session[SESSION_ID_KEY] = sid
    return sid


@router.get("/categories")
async def list_categories(db: Session = Depends(get_db)):
    """Normalized category names with their question counts."""
    try:
        index = load_category_index(db)
    except Exception as e:
        logger.error(f"Error fetching categories: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching categories")

    return {
        "categories": [
            {"name": name, "question_count": index.totals[name]}
            for name in index.names
        ]
    }


@router.post("/find")
async def find(
    criteria: SelectionCriteria,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Build a randomized list of question ids.

    Returns:
    - question_ids: at most ``limit`` ids, random order
    - pool_size: number of questions that matched
    - no_results: True when nothing matched
    """
    try:
        result = find_questions(
            db, user, criteria,
            cache=phrase_cache,
            session_key=get_session_key(request)
        )
    except Exception as e:
        logger.error(f"Question search failed: {e}", exc_info=True, extra=log_context(user))
        raise HTTPException(status_code=500, detail="An error occurred while searching questions")

    return {
        "question_ids": result.question_ids,
        "pool_size": result.pool_size,
        "no_results": result.no_results,
    }
