"""Administrative catalog operations outside the ingestion path.

Every change that affects what readers see bumps the last-updated stamp so
client caches get invalidated.
"""

import logging
import sqlite3
from typing import Any

from pydantic import ValidationError

from src.catalog.query import with_progress
from src.core import db
from src.core.errors import InputError, NotFoundError
from src.core.schemas import DIFFICULTIES, Question, TrackedQuestion
from src.ingest.metadata import MetadataPublisher

logger = logging.getLogger(__name__)

RECENT_QUESTIONS_LIMIT = 10

# Assigned by the store, never by an update.
_READ_ONLY_FIELDS = frozenset({"id", "created_at", "updated_at"})


def get_question(
    conn: sqlite3.Connection,
    question_id: int,
    user_id: str | None = None,
) -> TrackedQuestion:
    """Fetch an active question or raise NotFoundError.

    With ``user_id``, that user's tracking status and notes are attached.
    """
    question = db.get_question(conn, question_id)
    if question is None or not question.is_active:
        msg = f"Question not found: {question_id}"
        raise NotFoundError(msg)
    return with_progress(conn, [question], user_id)[0]


def _field_names(fields: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase or snake_case keys onto Question field names."""
    lookup: dict[str, str] = {}
    for name, info in Question.model_fields.items():
        lookup[name] = name
        if info.alias:
            lookup[info.alias] = name

    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        name = lookup.get(key)
        if name is None or name in _READ_ONLY_FIELDS:
            msg = f"Cannot update field '{key}'"
            raise InputError(msg)
        normalized[name] = value
    return normalized


def update_question(
    conn: sqlite3.Connection,
    question_id: int,
    fields: dict[str, Any],
    *,
    publisher: MetadataPublisher | None = None,
) -> Question:
    """Overwrite the given fields of a question, active or not.

    ``topics`` and ``companies`` replace the stored lists. The merged result
    is validated as a whole before anything is written.
    """
    if not fields:
        msg = "No fields to update"
        raise InputError(msg)
    changes = _field_names(fields)

    current = db.get_question(conn, question_id)
    if current is None:
        msg = f"Question not found: {question_id}"
        raise NotFoundError(msg)

    try:
        updated = Question.model_validate({**current.model_dump(), **changes})
    except ValidationError as e:
        msg = f"Invalid question update: {e.errors()[0]['msg']}"
        raise InputError(msg) from e

    try:
        db.apply_question_patch(
            conn,
            question_id,
            {name: getattr(updated, name) for name in changes},
        )
    except sqlite3.IntegrityError as e:
        msg = f"Question already exists: {updated.title} ({updated.link})"
        raise InputError(msg) from e

    logger.info("Updated question %d (%s)", question_id, ", ".join(sorted(changes)))
    (publisher or MetadataPublisher(conn)).safe_publish()
    stored = db.get_question(conn, question_id)
    if stored is None:
        msg = f"Question not found: {question_id}"
        raise NotFoundError(msg)
    return stored


def delete_question(
    conn: sqlite3.Connection,
    question_id: int,
    *,
    publisher: MetadataPublisher | None = None,
) -> None:
    """Physically delete a question and the tracking rows that reference it."""
    if not db.delete_question(conn, question_id):
        msg = f"Question not found: {question_id}"
        raise NotFoundError(msg)
    logger.info("Deleted question %d", question_id)
    (publisher or MetadataPublisher(conn)).safe_publish()


def set_question_active(
    conn: sqlite3.Connection,
    question_id: int,
    active: bool,
    *,
    publisher: MetadataPublisher | None = None,
) -> None:
    """Hide a question from every read query (or bring it back)."""
    if not db.set_question_active(conn, question_id, active):
        msg = f"Question not found: {question_id}"
        raise NotFoundError(msg)
    logger.info("Question %d %s", question_id, "activated" if active else "deactivated")
    (publisher or MetadataPublisher(conn)).safe_publish()


def admin_stats(conn: sqlite3.Connection, recent: int = RECENT_QUESTIONS_LIMIT) -> dict[str, Any]:
    """Dashboard totals over the whole catalog, inactive questions included."""
    total = conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0]
    by_difficulty = {d: 0 for d in DIFFICULTIES}
    for row in conn.execute("SELECT difficulty, COUNT(*) AS count FROM questions GROUP BY difficulty"):
        by_difficulty[row["difficulty"]] = row["count"]
    companies = conn.execute(
        "SELECT COUNT(DISTINCT company_key) FROM question_companies",
    ).fetchone()[0]
    rows = conn.execute(
        "SELECT * FROM questions ORDER BY created_at DESC, id DESC LIMIT ?",
        (recent,),
    ).fetchall()
    return {
        "totalQuestions": total,
        "questionsByDifficulty": by_difficulty,
        "totalCompanies": companies,
        "recentQuestions": db.hydrate_questions(conn, rows),
    }
