"""Proxy for the upstream question bank feed."""
import httpx
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from app.config import settings
from app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["questions"])


def error_response() -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": "Unable to load questions"})


@router.get("/api/questions")
async def proxy_questions():
    """Return the JSON array served by QUESTIONS_SOURCE_URL, or a generic error."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(settings.QUESTIONS_SOURCE_URL)
    except httpx.HTTPError as e:
        logger.error(f"Question source unreachable: {e}")
        return error_response()

    if not response.is_success:
        logger.error(f"Question source returned {response.status_code}")
        return error_response()

    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"Question source returned invalid JSON: {e}")
        return error_response()

    return JSONResponse(content=data)
