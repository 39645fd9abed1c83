#!/usr/bin/env python3
"""
Question Import Script

Loads questions into the question bank from a JSON file or from the upstream
feed (QUESTIONS_SOURCE_URL). Existing questions with the same id are replaced.

Checks each question for:
- Non-empty text and options
- Correct answers that are all among the options

Usage:
    python scripts/import_questions.py questions.json
    python scripts/import_questions.py --url http://localhost:4000/questions
    python scripts/import_questions.py questions.json --dry-run
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Dict, List

import httpx

# Allow running from the project root without installing the package
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings  # noqa: E402
from app.db.database import SessionLocal, Base, engine  # noqa: E402
from app.db.init_db import ensure_sqlite_directory, load_questions_file, question_from_payload, upsert_questions  # noqa: E402

logger = logging.getLogger("import_questions")


def fetch_questions_from_url(url: str) -> List[Dict]:
    """Download the JSON array served by the question feed."""
    response = httpx.get(url, timeout=30.0)
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, list):
        raise ValueError(f"{url} did not return a JSON array")
    return payload


def check_questions(payloads: List[Dict]) -> int:
    """Validate payloads without writing. Returns the number of invalid entries."""
    invalid = 0
    for payload in payloads:
        try:
            question_from_payload(payload)
        except ValueError as e:
            invalid += 1
            print(f"  INVALID: {e}")
    return invalid


def main() -> int:
    parser = argparse.ArgumentParser(description="Import questions into the question bank")
    parser.add_argument("file", nargs="?", help="JSON file containing an array of questions")
    parser.add_argument("--url", help="Fetch questions from this URL instead of a file")
    parser.add_argument("--dry-run", action="store_true", help="Validate only, do not write")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.file:
        payloads = load_questions_file(args.file)
        source = args.file
    else:
        source = args.url or settings.QUESTIONS_SOURCE_URL
        payloads = fetch_questions_from_url(source)

    print(f"Read {len(payloads)} questions from {source}")
    print("-" * 50)

    invalid = check_questions(payloads)
    print("-" * 50)
    print(f"Valid: {len(payloads) - invalid}  Invalid: {invalid}")

    if args.dry_run:
        return 1 if invalid else 0

    ensure_sqlite_directory(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        imported = upsert_questions(db, payloads)
    finally:
        db.close()

    print(f"Imported {imported} questions into {settings.DATABASE_URL}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
