"""SQLite database layer for the question catalog, metadata, tracking and requests."""

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from src.core.errors import StorageError
from src.core.schemas import (
    CompanyRequest,
    CompanyTag,
    NaturalKey,
    Question,
    RequestMessage,
    Tracking,
)

_QUESTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS questions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    title           TEXT    NOT NULL,
    difficulty      TEXT    NOT NULL CHECK (difficulty IN ('Easy', 'Medium', 'Hard')),
    link            TEXT    NOT NULL,
    acceptance_rate REAL    NOT NULL DEFAULT 0.0,
    frequency       REAL    NOT NULL DEFAULT 0.0,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL,
    UNIQUE(title, link)
);
"""

_QUESTION_TOPICS_TABLE = """
CREATE TABLE IF NOT EXISTS question_topics (
    question_id INTEGER NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    position    INTEGER NOT NULL,
    topic       TEXT    NOT NULL,
    PRIMARY KEY (question_id, position)
);
"""

_QUESTION_COMPANIES_TABLE = """
CREATE TABLE IF NOT EXISTS question_companies (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    question_id     INTEGER NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    company         TEXT    NOT NULL,
    company_key     TEXT    NOT NULL,
    last_asked_date TEXT,
    asked_within    TEXT,
    frequency       REAL    NOT NULL DEFAULT 0.0,
    UNIQUE(question_id, company_key)
);
"""

_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS metadata (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS tracking (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT    NOT NULL,
    question_id INTEGER NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    is_solved   INTEGER NOT NULL DEFAULT 0,
    is_revise   INTEGER NOT NULL DEFAULT 0,
    notes       TEXT,
    solved_at   TEXT,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL,
    UNIQUE(user_id, question_id)
);
"""

_REQUESTS_TABLE = """
CREATE TABLE IF NOT EXISTS company_requests (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL,
    company    TEXT NOT NULL,
    status     TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_REQUEST_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS request_messages (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id        INTEGER NOT NULL REFERENCES company_requests(id) ON DELETE CASCADE,
    sender_id         TEXT    NOT NULL,
    content           TEXT    NOT NULL,
    is_system_message INTEGER NOT NULL DEFAULT 0,
    created_at        TEXT    NOT NULL
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_questions_difficulty ON questions(difficulty)",
    "CREATE INDEX IF NOT EXISTS idx_questions_title ON questions(title)",
    "CREATE INDEX IF NOT EXISTS idx_companies_key ON question_companies(company_key)",
    "CREATE INDEX IF NOT EXISTS idx_companies_date ON question_companies(last_asked_date)",
    "CREATE INDEX IF NOT EXISTS idx_topics_topic ON question_topics(topic)",
    "CREATE INDEX IF NOT EXISTS idx_tracking_user ON tracking(user_id)",
)

# Columns a patch may overwrite; topics and companies are replaced wholesale.
_PATCHABLE_COLUMNS = frozenset(
    {"title", "difficulty", "link", "acceptance_rate", "frequency", "is_active"},
)
_PATCHABLE_LISTS = frozenset({"topics", "companies"})

# SQLite's default limit on bound parameters is 999 on older builds.
_IN_CHUNK = 500


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    for ddl in (
        _QUESTIONS_TABLE,
        _QUESTION_TOPICS_TABLE,
        _QUESTION_COMPANIES_TABLE,
        _METADATA_TABLE,
        _TRACKING_TABLE,
        _REQUESTS_TABLE,
        _REQUEST_MESSAGES_TABLE,
    ):
        conn.execute(ddl)
    for ddl in _INDEXES:
        conn.execute(ddl)
    conn.commit()
    return conn


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _chunks(values: list[Any], size: int = _IN_CHUNK) -> Iterable[list[Any]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


def hydrate_questions(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Question]:
    """Build Question models from question rows, loading topics and company tags.

    Output order matches the order of ``rows``.
    """
    if not rows:
        return []
    ids = [row["id"] for row in rows]
    topics: dict[int, list[str]] = {qid: [] for qid in ids}
    companies: dict[int, list[CompanyTag]] = {qid: [] for qid in ids}

    for chunk in _chunks(ids):
        marks = ",".join("?" * len(chunk))
        for t in conn.execute(
            f"SELECT question_id, topic FROM question_topics "
            f"WHERE question_id IN ({marks}) ORDER BY question_id, position",
            chunk,
        ):
            topics[t["question_id"]].append(t["topic"])
        for c in conn.execute(
            f"SELECT * FROM question_companies "
            f"WHERE question_id IN ({marks}) ORDER BY question_id, id",
            chunk,
        ):
            companies[c["question_id"]].append(
                CompanyTag(
                    company=c["company"],
                    last_asked_date=_dt(c["last_asked_date"]),
                    asked_within=c["asked_within"],
                    frequency=c["frequency"],
                ),
            )

    return [
        Question(
            id=row["id"],
            title=row["title"],
            difficulty=row["difficulty"],
            topics=topics[row["id"]],
            link=row["link"],
            acceptance_rate=row["acceptance_rate"],
            frequency=row["frequency"],
            companies=companies[row["id"]],
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )
        for row in rows
    ]


def _write_topics(conn: sqlite3.Connection, question_id: int, topics: list[str]) -> None:
    conn.execute("DELETE FROM question_topics WHERE question_id = ?", (question_id,))
    conn.executemany(
        "INSERT INTO question_topics (question_id, position, topic) VALUES (?, ?, ?)",
        [(question_id, i, topic) for i, topic in enumerate(topics)],
    )


def _insert_tag(conn: sqlite3.Connection, question_id: int, tag: CompanyTag) -> bool:
    cursor = conn.execute(
        """
        INSERT INTO question_companies
            (question_id, company, company_key, last_asked_date, asked_within, frequency)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(question_id, company_key) DO NOTHING
        """,
        (
            question_id,
            tag.company,
            tag.key,
            _ts(tag.last_asked_date),
            tag.asked_within,
            tag.frequency,
        ),
    )
    return cursor.rowcount == 1


def insert_question(conn: sqlite3.Connection, question: Question) -> int:
    """Insert a question with its topics and company tags. Returns the new ID.

    Raises sqlite3.IntegrityError if (title, link) already exists; nothing is
    left behind in that case.
    """
    now = datetime.now()
    try:
        cursor = conn.execute(
            """
            INSERT INTO questions
                (title, difficulty, link, acceptance_rate, frequency,
                 is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                question.title,
                question.difficulty,
                question.link,
                question.acceptance_rate,
                question.frequency,
                int(question.is_active),
                _ts(question.created_at),
                _ts(now),
            ),
        )
        question_id = cursor.lastrowid or 0
        _write_topics(conn, question_id, question.topics)
        for tag in question.companies:
            _insert_tag(conn, question_id, tag)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return question_id


def apply_question_patch(
    conn: sqlite3.Connection,
    question_id: int,
    fields: dict[str, Any],
) -> None:
    """Overwrite the given scalar fields of a question.

    ``topics`` and ``companies`` replace the stored lists wholesale. Raises
    sqlite3.IntegrityError if a new title or link collides with another
    question's natural key; nothing is written in that case.
    """
    unknown = set(fields) - _PATCHABLE_COLUMNS - _PATCHABLE_LISTS
    if unknown:
        msg = f"Cannot patch fields: {sorted(unknown)}"
        raise ValueError(msg)

    columns = {k: v for k, v in fields.items() if k in _PATCHABLE_COLUMNS}
    if "is_active" in columns:
        columns["is_active"] = int(columns["is_active"])
    columns["updated_at"] = _ts(datetime.now())

    assignments = ", ".join(f"{col} = ?" for col in columns)
    try:
        conn.execute(
            f"UPDATE questions SET {assignments} WHERE id = ?",
            (*columns.values(), question_id),
        )
        if "topics" in fields:
            _write_topics(conn, question_id, list(fields["topics"]))
        if "companies" in fields:
            conn.execute("DELETE FROM question_companies WHERE question_id = ?", (question_id,))
            for tag in fields["companies"]:
                _insert_tag(conn, question_id, tag)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise


def append_company_tag(conn: sqlite3.Connection, question_id: int, tag: CompanyTag) -> bool:
    """Atomically add a company tag unless the company is already tagged.

    Returns True if the tag was appended, False if the company was present.
    Existing tags are never modified.
    """
    try:
        appended = _insert_tag(conn, question_id, tag)
        if appended:
            conn.execute(
                "UPDATE questions SET updated_at = ? WHERE id = ?",
                (_ts(datetime.now()), question_id),
            )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return appended


def get_question(conn: sqlite3.Connection, question_id: int) -> Question | None:
    """Fetch a question by ID, active or not."""
    row = conn.execute("SELECT * FROM questions WHERE id = ?", (question_id,)).fetchone()
    if row is None:
        return None
    return hydrate_questions(conn, [row])[0]


def find_question_by_key(conn: sqlite3.Connection, title: str, link: str) -> Question | None:
    """Fetch a question by its natural key."""
    row = conn.execute(
        "SELECT * FROM questions WHERE title = ? AND link = ?",
        (title, link),
    ).fetchone()
    if row is None:
        return None
    return hydrate_questions(conn, [row])[0]


def find_questions_by_titles(
    conn: sqlite3.Connection,
    titles: Iterable[str],
) -> dict[NaturalKey, Question]:
    """Load existing questions whose title is in ``titles``, keyed by (title, link).

    Inactive questions are included: they still own their natural key.
    """
    unique = sorted(set(titles))
    rows: list[sqlite3.Row] = []
    for chunk in _chunks(unique):
        marks = ",".join("?" * len(chunk))
        rows.extend(
            conn.execute(f"SELECT * FROM questions WHERE title IN ({marks})", chunk).fetchall(),
        )
    return {q.natural_key: q for q in hydrate_questions(conn, rows)}


def set_question_active(conn: sqlite3.Connection, question_id: int, active: bool) -> bool:
    """Activate or deactivate a question. Returns False if it does not exist."""
    cursor = conn.execute(
        "UPDATE questions SET is_active = ?, updated_at = ? WHERE id = ?",
        (int(active), _ts(datetime.now()), question_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def delete_question(conn: sqlite3.Connection, question_id: int) -> bool:
    """Physically delete a question along with its tags and tracking rows."""
    cursor = conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
    conn.commit()
    return cursor.rowcount == 1


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def get_metadata(conn: sqlite3.Connection, key: str) -> Any | None:
    """Return the stored value for ``key`` or None if never set."""
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return json.loads(row["value"])


def set_metadata(conn: sqlite3.Connection, key: str, value: Any) -> None:
    """Create or overwrite the metadata record for ``key``."""
    conn.execute(
        """
        INSERT INTO metadata (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key)
        DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, json.dumps(value), _ts(datetime.now())),
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------


def _row_to_tracking(row: sqlite3.Row) -> Tracking:
    return Tracking(
        id=row["id"],
        user_id=row["user_id"],
        question_id=row["question_id"],
        is_solved=bool(row["is_solved"]),
        is_revise=bool(row["is_revise"]),
        notes=row["notes"],
        solved_at=_dt(row["solved_at"]),
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


def get_tracking(conn: sqlite3.Connection, user_id: str, question_id: int) -> Tracking | None:
    row = conn.execute(
        "SELECT * FROM tracking WHERE user_id = ? AND question_id = ?",
        (user_id, question_id),
    ).fetchone()
    return _row_to_tracking(row) if row is not None else None


def save_tracking(conn: sqlite3.Connection, tracking: Tracking) -> Tracking:
    """Insert or update the tracking row for (user_id, question_id)."""
    now = datetime.now()
    conn.execute(
        """
        INSERT INTO tracking
            (user_id, question_id, is_solved, is_revise, notes, solved_at,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id, question_id)
        DO UPDATE SET
            is_solved = excluded.is_solved,
            is_revise = excluded.is_revise,
            notes = excluded.notes,
            solved_at = excluded.solved_at,
            updated_at = excluded.updated_at
        """,
        (
            tracking.user_id,
            tracking.question_id,
            int(tracking.is_solved),
            int(tracking.is_revise),
            tracking.notes,
            _ts(tracking.solved_at),
            _ts(tracking.created_at),
            _ts(now),
        ),
    )
    conn.commit()
    saved = get_tracking(conn, tracking.user_id, tracking.question_id)
    if saved is None:
        msg = f"Tracking row for question {tracking.question_id} was not written"
        raise StorageError(msg)
    return saved


def tracking_for_questions(
    conn: sqlite3.Connection,
    user_id: str,
    question_ids: list[int],
) -> dict[int, Tracking]:
    """Return the user's tracking rows for ``question_ids``, keyed by question ID."""
    found: dict[int, Tracking] = {}
    for chunk in _chunks(question_ids):
        marks = ",".join("?" * len(chunk))
        for row in conn.execute(
            f"SELECT * FROM tracking WHERE user_id = ? AND question_id IN ({marks})",
            [user_id, *chunk],
        ):
            found[row["question_id"]] = _row_to_tracking(row)
    return found


def delete_tracking(conn: sqlite3.Connection, user_id: str, question_id: int) -> bool:
    cursor = conn.execute(
        "DELETE FROM tracking WHERE user_id = ? AND question_id = ?",
        (user_id, question_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def list_tracking(
    conn: sqlite3.Connection,
    user_id: str,
    *,
    is_solved: bool | None = None,
    is_revise: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
    order_by: str = "updated_at",
) -> tuple[list[Tracking], int]:
    """Return (page of tracking rows with questions attached, total count)."""
    if order_by not in ("updated_at", "solved_at"):
        msg = f"Unsupported tracking order: {order_by}"
        raise ValueError(msg)

    where = ["user_id = ?"]
    params: list[Any] = [user_id]
    if is_solved is not None:
        where.append("is_solved = ?")
        params.append(int(is_solved))
    if is_revise is not None:
        where.append("is_revise = ?")
        params.append(int(is_revise))
    clause = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) FROM tracking WHERE {clause}", params).fetchone()[0]
    sql = f"SELECT * FROM tracking WHERE {clause} ORDER BY {order_by} DESC, id DESC"
    page_params = list(params)
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        page_params.extend([limit, offset])
    rows = conn.execute(sql, page_params).fetchall()

    items = [_row_to_tracking(row) for row in rows]
    if items:
        question_rows = []
        for chunk in _chunks([t.question_id for t in items]):
            marks = ",".join("?" * len(chunk))
            question_rows.extend(
                conn.execute(f"SELECT * FROM questions WHERE id IN ({marks})", chunk).fetchall(),
            )
        by_id = {q.id: q for q in hydrate_questions(conn, question_rows)}
        items = [t.model_copy(update={"question": by_id.get(t.question_id)}) for t in items]
    return items, total


# ---------------------------------------------------------------------------
# Company requests
# ---------------------------------------------------------------------------


def insert_request(
    conn: sqlite3.Connection,
    user_id: str,
    company: str,
    messages: list[RequestMessage],
) -> int:
    now = _ts(datetime.now())
    try:
        cursor = conn.execute(
            """
            INSERT INTO company_requests (user_id, company, status, created_at, updated_at)
            VALUES (?, ?, 'pending', ?, ?)
            """,
            (user_id, company, now, now),
        )
        request_id = cursor.lastrowid or 0
        for message in messages:
            _insert_request_message(conn, request_id, message)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return request_id


def _insert_request_message(
    conn: sqlite3.Connection,
    request_id: int,
    message: RequestMessage,
) -> None:
    conn.execute(
        """
        INSERT INTO request_messages
            (request_id, sender_id, content, is_system_message, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            request_id,
            message.sender_id,
            message.content,
            int(message.is_system_message),
            _ts(message.created_at),
        ),
    )


def add_request_message(
    conn: sqlite3.Connection,
    request_id: int,
    message: RequestMessage,
) -> None:
    _insert_request_message(conn, request_id, message)
    conn.execute(
        "UPDATE company_requests SET updated_at = ? WHERE id = ?",
        (_ts(datetime.now()), request_id),
    )
    conn.commit()


def update_request_status(conn: sqlite3.Connection, request_id: int, status: str) -> bool:
    cursor = conn.execute(
        "UPDATE company_requests SET status = ?, updated_at = ? WHERE id = ?",
        (status, _ts(datetime.now()), request_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def _hydrate_requests(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[CompanyRequest]:
    if not rows:
        return []
    ids = [row["id"] for row in rows]
    messages: dict[int, list[RequestMessage]] = {rid: [] for rid in ids}
    for chunk in _chunks(ids):
        marks = ",".join("?" * len(chunk))
        for m in conn.execute(
            f"SELECT * FROM request_messages WHERE request_id IN ({marks}) "
            f"ORDER BY request_id, id",
            chunk,
        ):
            messages[m["request_id"]].append(
                RequestMessage(
                    sender_id=m["sender_id"],
                    content=m["content"],
                    is_system_message=bool(m["is_system_message"]),
                    created_at=_dt(m["created_at"]),
                ),
            )
    return [
        CompanyRequest(
            id=row["id"],
            user_id=row["user_id"],
            company=row["company"],
            status=row["status"],
            messages=messages[row["id"]],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )
        for row in rows
    ]


def get_request(conn: sqlite3.Connection, request_id: int) -> CompanyRequest | None:
    row = conn.execute("SELECT * FROM company_requests WHERE id = ?", (request_id,)).fetchone()
    if row is None:
        return None
    return _hydrate_requests(conn, [row])[0]


def list_requests(conn: sqlite3.Connection) -> list[CompanyRequest]:
    rows = conn.execute(
        "SELECT * FROM company_requests ORDER BY created_at DESC, id DESC",
    ).fetchall()
    return _hydrate_requests(conn, rows)
