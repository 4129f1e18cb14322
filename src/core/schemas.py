"""Core data models for the question tracker."""

import math
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Difficulty = Literal["Easy", "Medium", "Hard"]
AskedWithin = Literal["30days", "2months", "6months", "older"]
RequestStatus = Literal["pending", "completed", "rejected"]
TrackingStatus = Literal["both", "solved", "revisiting", "unsolved"]

DIFFICULTIES: tuple[str, ...] = ("Easy", "Medium", "Hard")
ASKED_WITHIN_BUCKETS: tuple[str, ...] = ("30days", "2months", "6months", "older")

NaturalKey = tuple[str, str]


def company_key(name: str) -> str:
    """Normalized company name used for case-insensitive de-duplication."""
    return name.strip().lower()


class CompanyTag(BaseModel):
    """One company's interview history with a question.

    Accepts both field names and their camelCase aliases (``askedWithin``,
    ``lastAskedDate``); unknown keys are rejected.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    company: str
    last_asked_date: datetime | None = None
    asked_within: AskedWithin | None = None
    frequency: float = Field(default=0.0, ge=0.0)

    @field_validator("company")
    @classmethod
    def company_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "company must not be empty"
            raise ValueError(msg)
        return v.strip()

    @property
    def key(self) -> str:
        return company_key(self.company)


class Question(BaseModel):
    """A catalog entry, identified naturally by (title, link)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    id: int | None = None
    title: str
    difficulty: Difficulty
    topics: list[str] = Field(default_factory=list)
    link: str
    acceptance_rate: float = Field(default=0.0, ge=0.0)
    frequency: float = Field(default=0.0, ge=0.0)
    companies: list[CompanyTag] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("title", "link")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v.strip():
            msg = "title and link must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("topics")
    @classmethod
    def clean_topics(cls, v: list[str]) -> list[str]:
        return [t.strip() for t in v if t.strip()]

    @field_validator("companies")
    @classmethod
    def unique_companies(cls, v: list[CompanyTag]) -> list[CompanyTag]:
        keys = [tag.key for tag in v]
        if len(keys) != len(set(keys)):
            msg = "companies must not contain the same company twice"
            raise ValueError(msg)
        return v

    @property
    def natural_key(self) -> NaturalKey:
        return (self.title, self.link)

    def company_keys(self) -> set[str]:
        return {tag.key for tag in self.companies}

    def has_company(self, name: str) -> bool:
        return company_key(name) in self.company_keys()


class BatchRow(BaseModel):
    """A validated candidate fragment parsed from one input row. Never persisted."""

    model_config = ConfigDict(frozen=True)

    row: int = Field(ge=1)
    title: str
    difficulty: Difficulty
    topics: list[str] = Field(default_factory=list)
    link: str
    acceptance_rate: float = Field(default=0.0, ge=0.0)
    frequency: float = Field(default=0.0, ge=0.0)
    company: CompanyTag

    @property
    def natural_key(self) -> NaturalKey:
        return (self.title, self.link)


class RowError(BaseModel):
    """A recoverable failure for a single input row."""

    model_config = ConfigDict(frozen=True)

    row: int
    message: str
    kind: Literal["missing_required_field", "invalid_field"] = "missing_required_field"


class BatchReport(BaseModel):
    """Outcome of one ingestion call."""

    created: int = 0
    updated: int = 0
    details: list[RowError] = Field(default_factory=list)

    @property
    def errors(self) -> int:
        return len(self.details)

    def to_dict(self) -> dict[str, object]:
        return {
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
            "details": [{"row": e.row, "message": e.message} for e in self.details],
        }


class Tracking(BaseModel):
    """A user's progress on one question."""

    id: int | None = None
    user_id: str
    question_id: int
    is_solved: bool = False
    is_revise: bool = False
    notes: str | None = Field(default=None, max_length=1000)
    solved_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    question: Question | None = None

    @property
    def status(self) -> str:
        if self.is_solved and self.is_revise:
            return "both"
        if self.is_solved:
            return "solved"
        if self.is_revise:
            return "revisiting"
        return "unsolved"


class RequestMessage(BaseModel):
    """A single chat message on a company request."""

    sender_id: str
    content: str = Field(min_length=1, max_length=500)
    is_system_message: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class CompanyRequest(BaseModel):
    """A user's request to add questions for a company."""

    id: int | None = None
    user_id: str
    company: str
    messages: list[RequestMessage] = Field(default_factory=list)
    status: RequestStatus = "pending"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class TrackedQuestion(Question):
    """A question as read by a caller, with that caller's progress attached.

    ``tracking_status`` and ``user_notes`` stay None for anonymous reads and
    for questions the caller never tracked.
    """

    tracking_status: TrackingStatus | None = None
    user_notes: str | None = None

    @classmethod
    def from_question(cls, question: Question, tracking: Tracking | None = None) -> "TrackedQuestion":
        return cls.model_validate({
            **question.model_dump(),
            "tracking_status": tracking.status if tracking is not None else None,
            "user_notes": tracking.notes if tracking is not None else None,
        })


class QuestionPage(BaseModel):
    """One page of catalog query results."""

    items: list[TrackedQuestion]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict[str, object]:
        return {
            "data": [q.model_dump(mode="json", by_alias=True) for q in self.items],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }
