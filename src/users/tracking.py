"""Per-user progress tracking: solved / marked-for-revision flags and notes.

One tracking row per (user, question). Flags are toggled independently;
``solved_at`` follows ``is_solved``.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from src.core.db import delete_tracking, get_question, get_tracking, list_tracking, save_tracking
from src.core.errors import InputError, NotFoundError
from src.core.schemas import DIFFICULTIES, Tracking

logger = logging.getLogger(__name__)

RECENTLY_SOLVED_LIMIT = 5


class TrackingManager:
    """Reads and writes a user's progress on catalog questions.

    Usage::

        tm = TrackingManager(conn)
        tm.set_status("user-1", question_id, is_solved=True)
        tm.stats("user-1")["solved"]
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def set_status(
        self,
        user_id: str,
        question_id: int,
        *,
        is_solved: bool | None = None,
        is_revise: bool | None = None,
        notes: str | None = None,
    ) -> Tracking:
        """Create or update tracking; arguments left as None are not changed."""
        if get_question(self._conn, question_id) is None:
            msg = f"Question not found: {question_id}"
            raise NotFoundError(msg)

        current = get_tracking(self._conn, user_id, question_id)
        if current is None:
            current = Tracking(user_id=user_id, question_id=question_id)

        changes: dict[str, Any] = {}
        if is_solved is not None:
            changes["is_solved"] = is_solved
            changes["solved_at"] = datetime.now() if is_solved else None
        if is_revise is not None:
            changes["is_revise"] = is_revise
        if notes is not None:
            changes["notes"] = notes

        try:
            updated = Tracking.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            msg = "Notes cannot be more than 1000 characters"
            raise InputError(msg) from e
        saved = save_tracking(self._conn, updated)
        logger.debug(
            "Tracking for '%s' on %d: %s", user_id, question_id, saved.status,
        )
        return saved

    def get(self, user_id: str, question_id: int) -> Tracking | None:
        return get_tracking(self._conn, user_id, question_id)

    def delete(self, user_id: str, question_id: int) -> None:
        if not delete_tracking(self._conn, user_id, question_id):
            msg = f"Tracking record not found for question {question_id}"
            raise NotFoundError(msg)

    def list_progress(
        self,
        user_id: str,
        *,
        is_solved: bool | None = None,
        is_revise: bool | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Tracking], int]:
        """Return (page of tracking rows, newest updated first; total count)."""
        page = max(page, 1)
        return list_tracking(
            self._conn,
            user_id,
            is_solved=is_solved,
            is_revise=is_revise,
            limit=limit,
            offset=(page - 1) * limit,
        )

    def stats(self, user_id: str) -> dict[str, Any]:
        """Progress summary: totals, per difficulty, per company, recently solved."""
        items, total = list_tracking(self._conn, user_id)

        by_difficulty: dict[str, dict[str, int]] = {
            d: {"total": 0, "solved": 0} for d in DIFFICULTIES
        }
        by_company: dict[str, dict[str, int]] = {}
        for t in items:
            if t.question is None:
                continue
            bucket = by_difficulty.setdefault(t.question.difficulty, {"total": 0, "solved": 0})
            bucket["total"] += 1
            bucket["solved"] += int(t.is_solved)
            for tag in t.question.companies:
                entry = by_company.setdefault(tag.company, {"total": 0, "solved": 0})
                entry["total"] += 1
                entry["solved"] += int(t.is_solved)

        recent, _ = list_tracking(
            self._conn,
            user_id,
            is_solved=True,
            limit=RECENTLY_SOLVED_LIMIT,
            order_by="solved_at",
        )
        return {
            "total": total,
            "solved": sum(1 for t in items if t.is_solved),
            "unsolved": sum(1 for t in items if not t.is_solved),
            "revising": sum(1 for t in items if t.is_revise),
            "bothSolvedAndRevise": sum(1 for t in items if t.is_solved and t.is_revise),
            "byDifficulty": by_difficulty,
            "byCompany": by_company,
            "recentlySolved": recent,
        }
