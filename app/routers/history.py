"""History review endpoints."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from app.auth import UserContext, get_current_user
from app.constants import CONFIDENCE_MIN, CONFIDENCE_MAX
from app.db.database import get_db
from app.logging_config import get_logger, log_context
from app.services.history import (
    HistoryFilters,
    SortOrder,
    StatusFilter,
    fetch_history,
    rate_satisfaction,
    remove_activity,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/history", tags=["history"])


class SatisfactionClick(BaseModel):
    """A satisfaction score clicked in the history list (null clears)."""
    satisfaction: Optional[int] = Field(None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)


@router.get("")
async def list_history(
    page: int = Query(0, ge=0),
    status: StatusFilter = StatusFilter.ALL,
    satisfaction: Optional[int] = Query(None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX),
    category: List[str] = Query(default=[]),
    sort: SortOrder = SortOrder.NEWEST,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """One page of past attempts with question detail."""
    filters = HistoryFilters(status=status, satisfaction=satisfaction, categories=category, sort=sort)
    try:
        result = fetch_history(db, user, filters, page=page)
    except Exception as e:
        logger.error(f"Error fetching history: {e}", exc_info=True, extra=log_context(user))
        raise HTTPException(status_code=500, detail="Error fetching history")

    return {
        "items": result.items,
        "page": result.page,
        "has_more": result.has_more,
        "next_page": result.next_page,
    }


@router.patch("/{activity_id}")
async def click_satisfaction(
    activity_id: str,
    body: SatisfactionClick,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Set a satisfaction score; repeating the stored score removes the attempt."""
    try:
        record = rate_satisfaction(db, user, activity_id, body.satisfaction)
    except LookupError:
        raise HTTPException(status_code=404, detail="Activity not found")
    except Exception as e:
        db.rollback()
        logger.error(
            f"Error updating satisfaction: {e}",
            exc_info=True,
            extra=log_context(user, activity_id=activity_id)
        )
        raise HTTPException(status_code=500, detail="Error updating satisfaction")

    if record is None:
        return {"id": activity_id, "deleted": True, "satisfaction_rating": None}
    return {"id": record.id, "deleted": False, "satisfaction_rating": record.satisfaction_rating}


@router.delete("/{activity_id}")
async def delete_attempt(
    activity_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    try:
        remove_activity(db, user, activity_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Activity not found")
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting activity: {e}", exc_info=True, extra=log_context(activity_id=activity_id))
        raise HTTPException(status_code=500, detail="Error deleting activity")

    return {"id": activity_id, "deleted": True}
