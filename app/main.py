"""Main FastAPI application for QuizDeck."""
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware
from app.auth import AccessGateMiddleware, UserContext, get_current_user
from app.routers import analytics, auth, history, questions, quiz, selector
from app.db.init_db import init_db
from app.db.database import get_db
from app.logging_config import setup_logging, get_logger
from app.config import settings
from app.rate_limit import limiter

# Set up logging on module import
log_level = settings.LOG_LEVEL if settings.LOG_LEVEL else None
setup_logging(log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, apply migrations and seed questions on startup."""
    logger.info("Application startup initiated")
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="QuizDeck API",
    description="""
    Flashcard quiz service with self-rated confidence and performance analytics.

    ## Quiz Flow

    1. **Pick questions**: POST `/api/selector/find` with category, phrase and
       performance filters to get a random list of question ids
    2. **Load**: POST `/api/quiz/load` with the ids to get the question bodies
    3. **Submit**: POST `/api/quiz/submit` with selections and confidence
       ratings (1-4); every rated question is recorded
    4. **Rate**: POST `/api/quiz/satisfaction` to add, change or clear a
       satisfaction rating afterwards
    5. **Review**: GET `/api/analytics` and `/api/history`

    ## Scoring

    - An answer is correct when the selected options equal the correct set
    - A question is mastered once answered correctly at least once
    - Delusion and urgency contrast confidence with accuracy per category
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_tags=[
        {"name": "auth", "description": "GitHub sign-in and session"},
        {"name": "selector", "description": "Question selection"},
        {"name": "quiz", "description": "Quiz loading, submission and satisfaction ratings"},
        {"name": "analytics", "description": "Per-category performance"},
        {"name": "history", "description": "Past attempts"},
        {"name": "questions", "description": "Upstream question feed"},
        {"name": "health", "description": "Service health and readiness checks"},
    ]
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
logger.info(f"Rate limiting {'enabled' if settings.RATE_LIMIT_ENABLED else 'disabled'}")

# The gate reads the session, so SessionMiddleware is added last (outermost)
app.add_middleware(AccessGateMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SECRET_KEY,
    session_cookie=settings.SESSION_COOKIE_NAME,
    max_age=settings.SESSION_MAX_AGE,
    same_site="lax",
    https_only=settings.COOKIE_SECURE,
)

# Include routers
app.include_router(auth.router)
app.include_router(selector.router)
app.include_router(quiz.router)
app.include_router(analytics.router)
app.include_router(history.router)
app.include_router(questions.router)


@app.get("/")
async def home(user: UserContext = Depends(get_current_user)):
    """Entry point for signed-in, allow-listed users."""
    return {
        "app": "QuizDeck",
        "user": {"name": user.username, "email": user.email},
        "links": {
            "categories": "/api/selector/categories",
            "find": "/api/selector/find",
            "analytics": "/api/analytics",
            "history": "/api/history",
        },
    }


@app.get("/health", tags=["health"])
async def health_check(db: Session = Depends(get_db)):
    """Health check with database verification.

    Returns:
        200 OK: Service is healthy and database is accessible
        503 Service Unavailable: Database connection failed
    """
    timestamp = datetime.utcnow().isoformat() + "Z"

    try:
        db.execute(text("SELECT 1"))
        logger.debug("Health check passed")

        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": timestamp,
            "environment": settings.ENVIRONMENT
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)

        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": timestamp
            }
        )


@app.get("/readiness", tags=["health"])
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check for container orchestration."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.utcnow().isoformat() + "Z"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
