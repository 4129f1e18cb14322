"""Orchestrator: wires parser, reconciler, plan execution, metadata and report.

Data flow for one batch:
  1. Input gate (company, recency bucket, at least one row)
  2. Row parser -> BatchRows + RowErrors
  3. Snapshot of existing questions for the batch's titles
  4. Reconciler -> BatchPlan
  5. Execute plan (one commit per op)
  6. Publish metadata if any op ran
  7. Batch report
"""

import csv
import logging
import shutil
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.core.db import (
    append_company_tag,
    apply_question_patch,
    find_question_by_key,
    find_questions_by_titles,
    insert_question,
)
from src.core.errors import InputError, StorageError
from src.core.schemas import (
    ASKED_WITHIN_BUCKETS,
    BatchReport,
    CompanyTag,
    NaturalKey,
    Question,
    RowError,
)
from src.ingest.metadata import MetadataPublisher, now_ms
from src.ingest.parser import RawRow, parse_rows, read_csv_rows
from src.ingest.reconciler import BatchPlan, InsertOp, ScalarPatch, UpdateOp, reconcile

logger = logging.getLogger(__name__)


def validate_batch_input(company: str | None, asked_within: str | None) -> tuple[str, str]:
    """Reject a batch before any processing if company or bucket is unusable."""
    company = (company or "").strip()
    asked_within = (asked_within or "").strip()
    if not company or not asked_within:
        msg = "Company and asked-within time range are required"
        raise InputError(msg)
    if asked_within not in ASKED_WITHIN_BUCKETS:
        msg = (
            f"Invalid asked-within time range '{asked_within}' "
            f"(expected one of {', '.join(ASKED_WITHIN_BUCKETS)})"
        )
        raise InputError(msg)
    return company, asked_within


def ingest_rows(
    conn: sqlite3.Connection,
    rows: Iterable[RawRow],
    company: str | None,
    asked_within: str | None,
    *,
    publisher: MetadataPublisher | None = None,
) -> BatchReport:
    """Ingest one batch of raw rows for a company/bucket pair.

    Raises InputError before touching the store, StorageError if a write
    fails. Row-level problems are returned in the report.
    """
    company, asked_within = validate_batch_input(company, asked_within)
    rows = list(rows)
    if not rows:
        msg = "No rows supplied"
        raise InputError(msg)

    logger.info("Ingesting %d rows for '%s' (%s)", len(rows), company, asked_within)
    batch_rows, errors = parse_rows(rows, company, asked_within)

    try:
        existing = find_questions_by_titles(conn, [r.title for r in batch_rows])
    except sqlite3.Error as e:
        msg = f"Failed to load existing questions: {e}"
        raise StorageError(msg) from e

    plan = reconcile(batch_rows, existing)
    executed = execute_plan(conn, plan)

    if executed:
        (publisher or MetadataPublisher(conn)).safe_publish()
    else:
        logger.info("No operations to perform (no new data)")

    report = build_report(plan, errors)
    logger.info(
        "Batch for '%s': %d created, %d updated, %d errors",
        company, report.created, report.updated, report.errors,
    )
    return report


def execute_plan(conn: sqlite3.Connection, plan: BatchPlan) -> int:
    """Write every op in order. Returns the number of ops executed.

    Each op commits on its own; a failure raises StorageError and leaves the
    already-committed ops in place.
    """
    inserted: dict[NaturalKey, int] = {}
    executed = 0
    for op in plan.ops:
        try:
            if isinstance(op, InsertOp):
                inserted[op.key] = _execute_insert(conn, op)
            else:
                _execute_update(conn, op, inserted)
        except sqlite3.Error as e:
            msg = f"Failed to write row {op.row}: {e}"
            raise StorageError(msg) from e
        executed += 1
    if executed:
        logger.debug("Executed %d operations", executed)
    return executed


def _execute_insert(conn: sqlite3.Connection, op: InsertOp) -> int:
    try:
        return insert_question(conn, op.question)
    except sqlite3.IntegrityError:
        # Another writer created the same natural key after our snapshot.
        current = find_question_by_key(conn, *op.key)
        if current is None or current.id is None:
            raise
        logger.warning(
            "Row %d: '%s' appeared concurrently, merging instead of inserting",
            op.row, op.question.title,
        )
        q = op.question
        patch = ScalarPatch(
            difficulty=q.difficulty,
            topics=list(q.topics) or None,
            acceptance_rate=q.acceptance_rate if q.acceptance_rate > 0 else None,
            link=q.link,
            frequency=q.frequency if q.frequency > 0 else None,
        )
        _write_merge(conn, current.id, patch, tuple(q.companies))
        return current.id


def _execute_update(
    conn: sqlite3.Connection,
    op: UpdateOp,
    inserted: dict[NaturalKey, int],
) -> None:
    question_id = op.question_id if op.question_id is not None else inserted.get(op.key)
    if question_id is None:
        msg = f"Row {op.row}: no stored question for {op.key!r}"
        raise StorageError(msg)
    _write_merge(conn, question_id, op.patch, op.company_appends)


def _write_merge(
    conn: sqlite3.Connection,
    question_id: int,
    patch: ScalarPatch,
    companies: tuple[CompanyTag, ...],
) -> None:
    fields = patch.fields()
    if fields:
        apply_question_patch(conn, question_id, fields)
    for tag in companies:
        if not append_company_tag(conn, question_id, tag):
            logger.debug("Company '%s' already tagged on question %d", tag.company, question_id)


def build_report(plan: BatchPlan, errors: list[RowError]) -> BatchReport:
    """Counts mirror the plan's ops 1:1; details hold every row error."""
    return BatchReport(
        created=plan.created,
        updated=plan.updated,
        details=sorted(errors, key=lambda e: e.row),
    )


def ingest_csv_file(
    conn: sqlite3.Connection,
    path: str | Path,
    company: str | None,
    asked_within: str | None,
    *,
    remove_source: bool = True,
    publisher: MetadataPublisher | None = None,
) -> BatchReport:
    """Ingest an uploaded CSV file.

    The file is treated as a scoped resource: when ``remove_source`` is set it
    is deleted afterwards whether the batch succeeded or not.
    """
    path = Path(path)
    try:
        validate_batch_input(company, asked_within)
        if not path.is_file():
            msg = f"No file uploaded: {path}"
            raise InputError(msg)
        try:
            rows = read_csv_rows(path)
        except (csv.Error, UnicodeDecodeError) as e:
            msg = f"Could not read CSV file {path.name}: {e}"
            raise InputError(msg) from e
        return ingest_rows(conn, rows, company, asked_within, publisher=publisher)
    finally:
        if remove_source:
            _remove_source(path)


def _remove_source(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Error deleting uploaded file %s", path, exc_info=True)


def stage_upload(source: str | Path, uploads_dir: str | Path) -> Path:
    """Copy ``source`` into ``uploads_dir`` as ``<epoch-ms>-<name>``."""
    source = Path(source)
    if not source.is_file():
        msg = f"File not found: {source}"
        raise FileNotFoundError(msg)
    uploads_dir = Path(uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    staged = uploads_dir / f"{now_ms()}-{source.name}"
    shutil.copyfile(source, staged)
    logger.debug("Staged %s as %s", source, staged)
    return staged


def create_questions(
    conn: sqlite3.Connection,
    questions: list[Question | dict[str, Any]],
    *,
    publisher: MetadataPublisher | None = None,
) -> BatchReport:
    """Insert fully-formed questions directly, skipping natural-key collisions.

    Unordered: a bad or duplicate entry is reported and the rest still go in.
    """
    if not questions:
        msg = "Questions list is required"
        raise InputError(msg)

    created = 0
    errors: list[RowError] = []
    for index, item in enumerate(questions, start=1):
        try:
            question = item if isinstance(item, Question) else Question.model_validate(item)
        except ValidationError as e:
            errors.append(RowError(row=index, message=_first_error(e), kind="invalid_field"))
            continue
        try:
            insert_question(conn, question)
        except sqlite3.IntegrityError:
            errors.append(
                RowError(
                    row=index,
                    message=f"Question already exists: {question.title}",
                    kind="invalid_field",
                ),
            )
            continue
        except sqlite3.Error as e:
            msg = f"Failed to create question {index}: {e}"
            raise StorageError(msg) from e
        created += 1

    if created:
        (publisher or MetadataPublisher(conn)).safe_publish()
    logger.info("Bulk create: %d created, %d errors", created, len(errors))
    return BatchReport(created=created, details=errors)


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]
