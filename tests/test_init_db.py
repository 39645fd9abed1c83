"""Tests for database initialization, migrations and question import."""
import json
import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.config import settings
from app.db.init_db import (
    apply_schema_migrations,
    ensure_sqlite_directory,
    load_questions_file,
    question_from_payload,
    seed_questions,
    upsert_questions,
)
from app.db.models import Question

LEGACY_ACTIVITY_TABLE = """
CREATE TABLE user_activity (
    id VARCHAR(36) PRIMARY KEY,
    question_id VARCHAR(36) NOT NULL,
    user_email TEXT NOT NULL,
    is_correct BOOLEAN NOT NULL,
    user_rating INTEGER NOT NULL,
    submitted_answer JSON NOT NULL,
    attempted_at TIMESTAMP NOT NULL
)
"""


def payload(**overrides):
    data = {
        "id": "q1",
        "category": "Renal",
        "question_text": "Which?",
        "options": ["A", "B"],
        "correct_answers": ["A"],
        "explanation": "Because",
    }
    data.update(overrides)
    return data


class TestQuestionFromPayload:

    def test_builds_question(self):
        question = question_from_payload(payload())
        assert question.id == "q1"
        assert question.options == ["A", "B"]
        assert question.correct_answers == ["A"]

    def test_legacy_question_key(self):
        data = payload()
        del data["question_text"]
        data["question"] = "Legacy prompt"
        assert question_from_payload(data).question_text == "Legacy prompt"

    def test_numeric_id_becomes_string(self):
        assert question_from_payload(payload(id=42)).id == "42"

    @pytest.mark.parametrize("overrides", [
        {"question_text": ""},
        {"options": []},
        {"correct_answers": ["Z"]},
    ])
    def test_invalid_payload(self, overrides):
        with pytest.raises(ValueError):
            question_from_payload(payload(**overrides))


class TestUpsertQuestions:

    def test_inserts_and_replaces_by_id(self, test_db):
        assert upsert_questions(test_db, [payload(), payload(id="q2")]) == 2
        assert upsert_questions(test_db, [payload(question_text="Updated?")]) == 1

        assert test_db.query(Question).count() == 2
        assert test_db.query(Question).filter(Question.id == "q1").one().question_text == "Updated?"

    def test_invalid_entries_skipped(self, test_db):
        assert upsert_questions(test_db, [payload(), payload(id="bad", options=[])]) == 1
        assert test_db.query(Question).count() == 1


class TestSeedQuestions:

    def test_seeds_empty_table(self, test_db, tmp_path, monkeypatch):
        seed_file = tmp_path / "questions.json"
        seed_file.write_text(json.dumps([payload(), payload(id="q2")]), encoding="utf-8")
        monkeypatch.setattr(settings, "QUESTIONS_SEED_FILE", str(seed_file))

        seed_questions(test_db)
        assert test_db.query(Question).count() == 2

    def test_skips_populated_table(self, test_db, tmp_path, monkeypatch, make_question):
        make_question()
        seed_file = tmp_path / "questions.json"
        seed_file.write_text(json.dumps([payload(id="new")]), encoding="utf-8")
        monkeypatch.setattr(settings, "QUESTIONS_SEED_FILE", str(seed_file))

        seed_questions(test_db)
        assert test_db.query(Question).count() == 1

    def test_file_must_hold_a_list(self, tmp_path):
        seed_file = tmp_path / "questions.json"
        seed_file.write_text(json.dumps({"questions": []}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_questions_file(str(seed_file))


class TestSchemaMigrations:

    @pytest.fixture
    def legacy_db(self):
        engine = create_engine("sqlite://", poolclass=StaticPool,
                               connect_args={"check_same_thread": False})
        with engine.begin() as conn:
            conn.execute(text(LEGACY_ACTIVITY_TABLE))
            conn.execute(text(
                "INSERT INTO user_activity VALUES "
                "('a1', 'q1', 'tester@example.com', 1, 3, '[]', '2024-10-01 09:00:00')"
            ))
        db = sessionmaker(bind=engine)()
        yield db
        db.close()

    def test_adds_columns_and_indexes(self, legacy_db):
        apply_schema_migrations(legacy_db)

        inspector = inspect(legacy_db.get_bind())
        columns = {col["name"] for col in inspector.get_columns("user_activity")}
        indexes = {idx["name"] for idx in inspector.get_indexes("user_activity")}
        assert {"satisfaction_rating", "updated_at"} <= columns
        assert {"idx_activity_user_attempted", "idx_activity_user_question"} <= indexes

    def test_backfills_updated_at(self, legacy_db):
        apply_schema_migrations(legacy_db)
        legacy_db.close()

        fresh = sessionmaker(bind=legacy_db.get_bind())()
        row = fresh.execute(text("SELECT attempted_at, updated_at FROM user_activity")).one()
        fresh.close()
        assert row.updated_at == "2024-10-01 09:00:00"
        assert row.updated_at == row.attempted_at

    def test_idempotent(self, legacy_db):
        apply_schema_migrations(legacy_db)
        apply_schema_migrations(legacy_db)
        columns = [col["name"] for col in inspect(legacy_db.get_bind()).get_columns("user_activity")]
        assert columns.count("satisfaction_rating") == 1

    def test_fresh_database_untouched(self, test_db):
        apply_schema_migrations(test_db)


class TestEnsureSqliteDirectory:

    def test_creates_parent_directory(self, tmp_path):
        target = tmp_path / "nested" / "quiz.db"
        ensure_sqlite_directory(f"sqlite:///{target}")
        assert target.parent.is_dir()

    def test_ignores_other_databases(self, tmp_path):
        ensure_sqlite_directory("postgresql://user@localhost/quizdeck")
        ensure_sqlite_directory("sqlite://")
