"""Reconciliation engine: decide, per batch row, between insert and merge.

The engine is pure: it takes the parsed rows and a snapshot of the existing
catalog (keyed by natural key) and returns a BatchPlan. Executing the plan is
the orchestrator's job.

Merge policy for a row whose (title, link) already exists:
  - Scalars are overwritten only by meaningful values: non-empty difficulty,
    non-empty topics (replaced wholesale), acceptance_rate > 0, non-empty
    link, frequency > 0. Blank or zero values never clobber.
  - The row's company tag is appended only if the question has no tag for
    that company (case-insensitive). An existing tag stays frozen at its
    first-tag values.

Same-batch duplicates are folded sequentially: every planned op is applied
to the working snapshot, so a later row with the same key merges against the
result of the earlier one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from src.core.schemas import BatchRow, CompanyTag, NaturalKey, Question

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScalarPatch:
    """Field overwrites for an existing question. Unset fields are left alone."""

    difficulty: str | None = None
    topics: list[str] | None = None
    acceptance_rate: float | None = None
    link: str | None = None
    frequency: float | None = None

    def fields(self) -> dict[str, Any]:
        """Return only the fields that should be written."""
        values = {
            "difficulty": self.difficulty,
            "topics": self.topics,
            "acceptance_rate": self.acceptance_rate,
            "link": self.link,
            "frequency": self.frequency,
        }
        return {k: v for k, v in values.items() if v is not None}

    def is_empty(self) -> bool:
        return not self.fields()


@dataclass(frozen=True)
class InsertOp:
    """Create a new question."""

    row: int
    question: Question

    @property
    def key(self) -> NaturalKey:
        return self.question.natural_key


@dataclass(frozen=True)
class UpdateOp:
    """Merge a row into an existing question.

    ``question_id`` is None when the target was inserted earlier in the same
    batch; the executor resolves it through ``key``.
    """

    row: int
    key: NaturalKey
    question_id: int | None
    patch: ScalarPatch
    company_appends: tuple[CompanyTag, ...] = ()


PlanOp = InsertOp | UpdateOp


@dataclass
class BatchPlan:
    """Ordered list of per-question operations for one batch."""

    ops: list[PlanOp] = field(default_factory=list)

    @property
    def inserts(self) -> list[InsertOp]:
        return [op for op in self.ops if isinstance(op, InsertOp)]

    @property
    def updates(self) -> list[UpdateOp]:
        return [op for op in self.ops if isinstance(op, UpdateOp)]

    @property
    def created(self) -> int:
        return len(self.inserts)

    @property
    def updated(self) -> int:
        return len(self.updates)

    def __len__(self) -> int:
        return len(self.ops)


def reconcile(
    batch_rows: list[BatchRow],
    existing: dict[NaturalKey, Question],
) -> BatchPlan:
    """Build the insert/update plan for ``batch_rows`` against ``existing``.

    ``existing`` is not modified.
    """
    snapshot: dict[NaturalKey, Question] = dict(existing)
    plan = BatchPlan()

    for row in batch_rows:
        key = row.natural_key
        current = snapshot.get(key)

        if current is None:
            question = build_question(row)
            plan.ops.append(InsertOp(row=row.row, question=question))
            snapshot[key] = question
            logger.debug("Row %d: insert '%s'", row.row, row.title)
            continue

        op = plan_update(row, current)
        if op is None:
            logger.debug("Row %d: '%s' unchanged, no op", row.row, row.title)
            continue
        plan.ops.append(op)
        snapshot[key] = apply_update(current, op)
        logger.debug(
            "Row %d: update '%s' (%d fields, %d new companies)",
            row.row, row.title, len(op.patch.fields()), len(op.company_appends),
        )

    return plan


def build_question(row: BatchRow) -> Question:
    """Build a brand-new question from a batch row."""
    return Question(
        title=row.title,
        difficulty=row.difficulty,
        topics=list(row.topics),
        link=row.link,
        acceptance_rate=row.acceptance_rate,
        frequency=row.frequency,
        companies=[row.company],
    )


def build_patch(row: BatchRow) -> ScalarPatch:
    """Collect the row's meaningful scalar values."""
    return ScalarPatch(
        difficulty=row.difficulty or None,
        topics=list(row.topics) if row.topics else None,
        acceptance_rate=row.acceptance_rate if row.acceptance_rate > 0 else None,
        link=row.link or None,
        frequency=row.frequency if row.frequency > 0 else None,
    )


def plan_update(row: BatchRow, current: Question) -> UpdateOp | None:
    """Plan a merge of ``row`` into ``current``; None when there is nothing to write."""
    patch = build_patch(row)
    appends: tuple[CompanyTag, ...] = ()
    if row.company.key not in current.company_keys():
        appends = (row.company,)

    if patch.is_empty() and not appends:
        return None
    return UpdateOp(
        row=row.row,
        key=row.natural_key,
        question_id=current.id,
        patch=patch,
        company_appends=appends,
    )


def apply_update(current: Question, op: UpdateOp) -> Question:
    """Return the question as it will look after ``op`` is executed."""
    changes: dict[str, Any] = dict(op.patch.fields())
    if op.company_appends:
        changes["companies"] = [*current.companies, *op.company_appends]
    return current.model_copy(update=changes)
