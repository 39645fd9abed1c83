"""Analytics endpoint."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.auth import UserContext, get_current_user
from app.db.database import get_db
from app.logging_config import get_logger, log_context
from app.services.analytics import SortMode, filter_by_name, load_analytics, sort_categories

logger = get_logger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("")
async def get_analytics(
    sort: SortMode = SortMode.URGENCY,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Performance summary for the current user.

    Returns:
    - total attempts and current day streak
    - trend: accuracy for the seven most recent activity days
    - categories: per-category stats in the requested order, optionally
      narrowed by a name search (display only)
    """
    try:
        report = load_analytics(db, user)
    except Exception as e:
        logger.error(f"Error building analytics: {e}", exc_info=True, extra=log_context(user))
        raise HTTPException(status_code=500, detail="Error building analytics")

    categories = filter_by_name(sort_categories(report.categories, sort), search)

    return {
        "total": report.total,
        "streak": report.streak,
        "sort": sort.value,
        "trend": [
            {"date": p.day.isoformat(), "label": p.label, "accuracy": p.accuracy, "attempts": p.attempts}
            for p in report.trend
        ],
        "categories": [c.to_dict() for c in categories],
    }
