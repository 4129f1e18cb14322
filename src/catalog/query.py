"""Catalog queries: filtered, paginated question listing and aggregate views.

Only active questions are ever returned. Filters combine with AND; when both
``company`` and ``asked_within`` are given they must match the same company
tag ("asked by X within the bucket").
"""

import logging
import math
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.core.db import hydrate_questions, tracking_for_questions
from src.core.schemas import (
    DIFFICULTIES,
    AskedWithin,
    Difficulty,
    Question,
    QuestionPage,
    TrackedQuestion,
    Tracking,
    company_key,
)

logger = logging.getLogger(__name__)

# bucket -> (newer bound in days, older bound in days); a tag's age must be
# greater than the first and at most the second.
_BUCKET_AGE_DAYS: dict[str, tuple[int | None, int | None]] = {
    "30days": (None, 30),
    "2months": (30, 60),
    "6months": (60, 180),
    "older": (180, None),
}


def categorize_time(date: datetime | None, now: datetime | None = None) -> str | None:
    """Map a last-asked date onto a recency bucket."""
    if date is None:
        return None
    now = now or datetime.now()
    diff_days = math.ceil(abs((now - date).total_seconds()) / 86400)
    if diff_days <= 30:
        return "30days"
    if diff_days <= 60:
        return "2months"
    if diff_days <= 180:
        return "6months"
    return "older"


class QuestionFilters(BaseModel):
    """Query parameters for the catalog listing."""

    company: str | None = None
    difficulty: Difficulty | None = None
    topics: list[str] = Field(default_factory=list)
    asked_within: AskedWithin | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @field_validator("topics", mode="before")
    @classmethod
    def split_topics(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    @field_validator("company", "search")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _bucket_condition(bucket: str, now: datetime) -> tuple[str, list[Any]]:
    """SQL for "this tag falls in ``bucket``" on alias ``c``."""
    newer, older = _BUCKET_AGE_DAYS[bucket]
    date_parts = ["c.asked_within IS NULL", "c.last_asked_date IS NOT NULL"]
    params: list[Any] = [bucket]
    if newer is not None:
        date_parts.append("c.last_asked_date < ?")
        params.append((now - timedelta(days=newer)).isoformat())
    if older is not None:
        date_parts.append("c.last_asked_date >= ?")
        params.append((now - timedelta(days=older)).isoformat())
    sql = f"(c.asked_within = ? OR ({' AND '.join(date_parts)}))"
    return sql, params


def _where(filters: QuestionFilters, now: datetime) -> tuple[str, list[Any]]:
    clauses = ["q.is_active = 1"]
    params: list[Any] = []

    if filters.difficulty:
        clauses.append("q.difficulty = ?")
        params.append(filters.difficulty)

    tag_parts: list[str] = []
    if filters.company:
        tag_parts.append("c.company_key LIKE ? ESCAPE '\\'")
        params.append(_like(company_key(filters.company)))
    if filters.asked_within:
        bucket_sql, bucket_params = _bucket_condition(filters.asked_within, now)
        tag_parts.append(bucket_sql)
        params.extend(bucket_params)
    if tag_parts:
        clauses.append(
            "EXISTS (SELECT 1 FROM question_companies c WHERE c.question_id = q.id AND "
            + " AND ".join(tag_parts)
            + ")",
        )

    if filters.topics:
        marks = ",".join("?" * len(filters.topics))
        clauses.append(
            "EXISTS (SELECT 1 FROM question_topics t "
            f"WHERE t.question_id = q.id AND t.topic IN ({marks}))",
        )
        params.extend(filters.topics)

    if filters.search:
        pattern = _like(filters.search)
        clauses.append(
            "(q.title LIKE ? ESCAPE '\\' OR EXISTS (SELECT 1 FROM question_topics t "
            "WHERE t.question_id = q.id AND t.topic LIKE ? ESCAPE '\\'))",
        )
        params.extend([pattern, pattern])

    return " AND ".join(clauses), params


def with_progress(
    conn: sqlite3.Connection,
    questions: list[Question],
    user_id: str | None = None,
    now: datetime | None = None,
) -> list[TrackedQuestion]:
    """Prepare questions for output.

    Tags uploaded without a bucket but with a last-asked date show the bucket
    derived from that date, matching how the ``asked_within`` filter treats
    them. When ``user_id`` is given, that user's tracking status and notes are
    attached.
    """
    tracking: dict[int, Tracking] = {}
    if user_id:
        tracking = tracking_for_questions(conn, user_id, [q.id for q in questions if q.id])
    return [
        TrackedQuestion.from_question(_derive_buckets(q, now), tracking.get(q.id or 0))
        for q in questions
    ]


def _derive_buckets(question: Question, now: datetime | None) -> Question:
    if not any(t.asked_within is None and t.last_asked_date for t in question.companies):
        return question
    companies = [
        tag.model_copy(update={"asked_within": categorize_time(tag.last_asked_date, now)})
        if tag.asked_within is None and tag.last_asked_date is not None
        else tag
        for tag in question.companies
    ]
    return question.model_copy(update={"companies": companies})


def query_questions(
    conn: sqlite3.Connection,
    filters: QuestionFilters,
    now: datetime | None = None,
    user_id: str | None = None,
) -> QuestionPage:
    """Return one page of active questions matching ``filters``.

    Ordered by the most recent company-tag date (questions without dates
    last), then newest created. Pass ``user_id`` to attach that user's
    progress to each question.
    """
    now = now or datetime.now()
    where, params = _where(filters, now)
    total = conn.execute(f"SELECT COUNT(*) FROM questions q WHERE {where}", params).fetchone()[0]

    last_asked = (
        "(SELECT MAX(c2.last_asked_date) FROM question_companies c2 "
        "WHERE c2.question_id = q.id)"
    )
    rows = conn.execute(
        f"""
        SELECT q.* FROM questions q
        WHERE {where}
        ORDER BY {last_asked} IS NULL, {last_asked} DESC, q.created_at DESC, q.id DESC
        LIMIT ? OFFSET ?
        """,
        [*params, filters.limit, (filters.page - 1) * filters.limit],
    ).fetchall()
    logger.debug("Catalog query matched %d questions (page %d)", total, filters.page)
    return QuestionPage(
        items=with_progress(conn, hydrate_questions(conn, rows), user_id, now),
        page=filters.page,
        limit=filters.limit,
        total=total,
    )


def company_stats(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Question count per company across active questions, most asked first."""
    rows = conn.execute(
        """
        SELECT MIN(c.company) AS name, COUNT(*) AS count
        FROM question_companies c
        JOIN questions q ON q.id = c.question_id
        WHERE q.is_active = 1
        GROUP BY c.company_key
        ORDER BY count DESC, name
        """,
    ).fetchall()
    return [{"name": row["name"], "count": row["count"]} for row in rows]


def list_topics(conn: sqlite3.Connection) -> list[str]:
    """Sorted distinct topics of active questions."""
    rows = conn.execute(
        """
        SELECT DISTINCT t.topic FROM question_topics t
        JOIN questions q ON q.id = t.question_id
        WHERE q.is_active = 1 AND t.topic != ''
        ORDER BY t.topic
        """,
    ).fetchall()
    return [row["topic"] for row in rows]


def home_stats(
    conn: sqlite3.Connection,
    featured: list[str],
    top_n: int = 12,
) -> dict[str, Any]:
    """Totals by difficulty, featured company counts, and the top other companies."""
    row = conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(difficulty = 'Easy'), 0) AS easy,
            COALESCE(SUM(difficulty = 'Medium'), 0) AS medium,
            COALESCE(SUM(difficulty = 'Hard'), 0) AS hard
        FROM questions WHERE is_active = 1
        """,
    ).fetchone()

    counts = company_stats(conn)
    by_key = {company_key(c["name"]): c["count"] for c in counts}
    featured_keys = {company_key(name) for name in featured}

    return {
        "total": row["total"],
        "easy": row["easy"],
        "medium": row["medium"],
        "hard": row["hard"],
        "featured": [
            {"name": name, "count": by_key.get(company_key(name), 0)} for name in featured
        ],
        "topCompanies": [
            c for c in counts if company_key(c["name"]) not in featured_keys
        ][:top_n],
        "totalCompanies": len(counts),
    }


# Keys of the time-range counts, per recency bucket.
_TIME_RANGE_KEYS = {
    "30days": "last30Days",
    "2months": "last2Months",
    "6months": "last6Months",
    "older": "older",
}


def question_stats(conn: sqlite3.Connection, now: datetime | None = None) -> dict[str, Any]:
    """Active question totals by difficulty and by recency bucket.

    A question counts toward every bucket one of its company tags falls in,
    so the time-range counts can add up to more than the total.
    """
    now = now or datetime.now()
    total = conn.execute("SELECT COUNT(*) FROM questions WHERE is_active = 1").fetchone()[0]

    by_difficulty = {d: 0 for d in DIFFICULTIES}
    for row in conn.execute(
        "SELECT difficulty, COUNT(*) AS count FROM questions "
        "WHERE is_active = 1 GROUP BY difficulty",
    ):
        by_difficulty[row["difficulty"]] = row["count"]

    by_time_range: dict[str, int] = {}
    for bucket, name in _TIME_RANGE_KEYS.items():
        bucket_sql, params = _bucket_condition(bucket, now)
        by_time_range[name] = conn.execute(
            "SELECT COUNT(*) FROM questions q WHERE q.is_active = 1 AND EXISTS "
            "(SELECT 1 FROM question_companies c WHERE c.question_id = q.id AND "
            f"{bucket_sql})",
            params,
        ).fetchone()[0]

    return {"total": total, "byDifficulty": by_difficulty, "byTimeRange": by_time_range}
