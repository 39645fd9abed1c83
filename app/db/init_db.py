"""Database initialization, auto-migration and question seeding."""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError
from app.config import settings
from app.db.database import engine, SessionLocal, Base
from app.db.models import Question

logger = logging.getLogger(__name__)

QUESTION_FIELDS = ("id", "category", "question_text", "options", "correct_answers", "explanation")


def question_from_payload(payload: Dict) -> Question:
    """Build a Question from a question-bank JSON object.

    Raises:
        ValueError: if the payload has no text, no options, or correct
            answers that are not among its options
    """
    data = {key: payload.get(key) for key in QUESTION_FIELDS if payload.get(key) is not None}
    # Older exports use "question" for the prompt
    if "question_text" not in data and payload.get("question"):
        data["question_text"] = payload["question"]

    if not data.get("question_text"):
        raise ValueError("question has no text")
    options = list(data.get("options") or [])
    correct = list(data.get("correct_answers") or [])
    if not options:
        raise ValueError(f"question {data.get('id')} has no options")
    unknown = [answer for answer in correct if answer not in options]
    if unknown:
        raise ValueError(f"question {data.get('id')} has correct answers not in options: {unknown}")

    data["options"] = options
    data["correct_answers"] = correct
    if data.get("id") is not None:
        data["id"] = str(data["id"])
    return Question(**data)


def load_questions_file(path: str) -> List[Dict]:
    """Read a JSON array of question objects."""
    with open(path, encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON array of questions")
    return payload


def upsert_questions(db: Session, payloads: Iterable[Dict]) -> int:
    """Insert or replace questions by id. Invalid entries are logged and skipped."""
    count = 0
    for payload in payloads:
        try:
            question = question_from_payload(payload)
        except ValueError as e:
            logger.warning(f"Skipping question: {e}")
            continue
        db.merge(question)
        count += 1
    db.commit()
    return count


def seed_questions(db: Session) -> None:
    """Seed the questions table from QUESTIONS_SEED_FILE when it is empty."""
    if not settings.QUESTIONS_SEED_FILE:
        return

    existing_count = db.query(Question).count()
    if existing_count > 0:
        logger.info(f"Questions table already contains {existing_count} entries. Skipping seed.")
        return

    logger.info(f"Seeding questions from {settings.QUESTIONS_SEED_FILE}...")
    seeded = upsert_questions(db, load_questions_file(settings.QUESTIONS_SEED_FILE))
    logger.info(f"Successfully seeded {seeded} questions.")


def check_column_exists(inspector, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    try:
        columns = [col['name'] for col in inspector.get_columns(table_name)]
        return column_name in columns
    except Exception as e:
        logger.warning(f"Error checking column {column_name} in {table_name}: {e}")
        return False


def check_index_exists(inspector, table_name: str, index_name: str) -> bool:
    """Check if an index exists on a table."""
    try:
        indexes = inspector.get_indexes(table_name)
        return any(idx['name'] == index_name for idx in indexes)
    except Exception as e:
        logger.warning(f"Error checking index {index_name} in {table_name}: {e}")
        return False


def apply_schema_migrations(db: Session) -> None:
    """
    Apply schema migrations automatically on startup.

    Brings activity tables created by earlier releases up to date:
    - Add satisfaction_rating and updated_at to user_activity
    - Add the per-user activity indexes

    All operations are idempotent.
    """
    # Inspection shares the migration transaction
    inspector = inspect(db.connection())
    existing_tables = inspector.get_table_names()

    if 'user_activity' not in existing_tables:
        logger.info("No activity table found. Schema will be created from scratch.")
        return

    logger.info("Checking for necessary schema migrations...")
    migrations_applied = []

    activity_columns = [
        ('satisfaction_rating', 'INTEGER'),
        ('updated_at', 'TIMESTAMP'),
    ]
    for col_name, col_def in activity_columns:
        if not check_column_exists(inspector, 'user_activity', col_name):
            try:
                logger.info(f"Adding column {col_name} to user_activity table...")
                db.execute(text(f"ALTER TABLE user_activity ADD COLUMN {col_name} {col_def}"))
                migrations_applied.append(f"Added column user_activity.{col_name}")
            except OperationalError as e:
                logger.warning(f"Could not add column {col_name}: {e}")

    if any(m.endswith("updated_at") for m in migrations_applied):
        db.execute(text("UPDATE user_activity SET updated_at = attempted_at WHERE updated_at IS NULL"))

    indexes_to_add = [
        ('idx_activity_user_attempted',
         'CREATE INDEX IF NOT EXISTS idx_activity_user_attempted ON user_activity (user_email, attempted_at)'),
        ('idx_activity_user_question',
         'CREATE INDEX IF NOT EXISTS idx_activity_user_question ON user_activity (user_email, question_id)'),
    ]
    for idx_name, sql in indexes_to_add:
        if not check_index_exists(inspector, 'user_activity', idx_name):
            try:
                logger.info(f"Creating index {idx_name}...")
                db.execute(text(sql))
                migrations_applied.append(f"Created index {idx_name}")
            except OperationalError as e:
                logger.warning(f"Could not create index {idx_name}: {e}")

    if migrations_applied:
        try:
            db.commit()
            logger.info(f"Applied {len(migrations_applied)} schema migrations:")
            for migration in migrations_applied:
                logger.info(f"  - {migration}")
        except Exception as e:
            db.rollback()
            logger.error(f"Error committing migrations: {e}")
            raise
    else:
        logger.info("No schema migrations needed. Database is up to date.")


def ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url.endswith(":memory:"):
        return
    Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


def init_db() -> None:
    """
    Initialize database: migrate, create tables and seed questions.

    Safe to call multiple times - all operations are idempotent.
    """
    logger.info("Initializing database...")
    ensure_sqlite_directory(settings.DATABASE_URL)

    db = SessionLocal()
    try:
        apply_schema_migrations(db)

        logger.info("Creating database tables from models...")
        Base.metadata.create_all(bind=engine)
        logger.info("Tables created/verified successfully.")

        seed_questions(db)

        logger.info("Database initialization complete.")
    except Exception as e:
        logger.error(f"Error during database initialization: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    init_db()
