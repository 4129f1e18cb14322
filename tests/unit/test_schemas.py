"""Tests for core schemas: CompanyTag, Question, BatchRow, BatchReport, Tracking."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from src.core.schemas import (
    BatchReport,
    BatchRow,
    CompanyTag,
    Question,
    QuestionPage,
    RequestMessage,
    RowError,
    TrackedQuestion,
    Tracking,
    company_key,
)


def _make_question(**overrides: object) -> Question:
    defaults: dict[str, object] = {
        "title": "Two Sum",
        "difficulty": "Easy",
        "topics": ["Array", "Hash Table"],
        "link": "https://x/two-sum",
        "acceptance_rate": 49.2,
        "companies": [CompanyTag(company="Google", asked_within="30days", frequency=5)],
    }
    defaults.update(overrides)
    return Question(**defaults)  # type: ignore[arg-type]


class TestCompanyKey:
    def test_lowercases_and_strips(self) -> None:
        assert company_key("  Google ") == "google"


class TestCompanyTag:
    def test_defaults(self) -> None:
        tag = CompanyTag(company="Google")
        assert tag.last_asked_date is None
        assert tag.asked_within is None
        assert tag.frequency == 0.0

    def test_company_required(self) -> None:
        with pytest.raises(ValidationError, match="company must not be empty"):
            CompanyTag(company="   ")

    def test_key_is_case_insensitive(self) -> None:
        assert CompanyTag(company="GOOGLE").key == CompanyTag(company="google").key

    def test_casing_preserved(self) -> None:
        assert CompanyTag(company="LinkedIn").company == "LinkedIn"

    def test_invalid_bucket(self) -> None:
        with pytest.raises(ValidationError):
            CompanyTag(company="Google", asked_within="yesterday")  # type: ignore[arg-type]

    def test_negative_frequency(self) -> None:
        with pytest.raises(ValidationError):
            CompanyTag(company="Google", frequency=-1)


class TestQuestion:
    def test_natural_key(self) -> None:
        q = _make_question()
        assert q.natural_key == ("Two Sum", "https://x/two-sum")

    def test_defaults(self) -> None:
        q = Question(title="A", difficulty="Hard", link="https://x/a")
        assert q.id is None
        assert q.topics == []
        assert q.companies == []
        assert q.is_active is True
        assert q.acceptance_rate == 0.0
        assert isinstance(q.created_at, datetime)

    def test_invalid_difficulty(self) -> None:
        with pytest.raises(ValidationError):
            _make_question(difficulty="Impossible")

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _make_question(title="  ")

    def test_topics_cleaned(self) -> None:
        q = _make_question(topics=[" Array ", "", "Graph"])
        assert q.topics == ["Array", "Graph"]

    def test_duplicate_companies_rejected(self) -> None:
        with pytest.raises(ValidationError, match="same company twice"):
            _make_question(companies=[CompanyTag(company="Google"), CompanyTag(company="google")])

    def test_has_company_case_insensitive(self) -> None:
        q = _make_question()
        assert q.has_company("GOOGLE") is True
        assert q.has_company("Amazon") is False


class TestBatchRow:
    def test_frozen(self) -> None:
        row = BatchRow(
            row=1,
            title="Two Sum",
            difficulty="Easy",
            link="https://x/two-sum",
            company=CompanyTag(company="Google"),
        )
        with pytest.raises(ValidationError):
            row.title = "Other"  # type: ignore[misc]

    def test_row_is_one_based(self) -> None:
        with pytest.raises(ValidationError):
            BatchRow(
                row=0,
                title="Two Sum",
                difficulty="Easy",
                link="https://x/two-sum",
                company=CompanyTag(company="Google"),
            )


class TestBatchReport:
    def test_errors_counts_details(self) -> None:
        report = BatchReport(
            created=2,
            updated=1,
            details=[RowError(row=3, message="Missing required fields: title")],
        )
        assert report.errors == 1

    def test_to_dict_shape(self) -> None:
        report = BatchReport(
            created=1,
            updated=0,
            details=[RowError(row=2, message="bad", kind="invalid_field")],
        )
        assert report.to_dict() == {
            "created": 1,
            "updated": 0,
            "errors": 1,
            "details": [{"row": 2, "message": "bad"}],
        }


class TestTracking:
    @pytest.mark.parametrize(
        ("solved", "revise", "status"),
        [
            (False, False, "unsolved"),
            (True, False, "solved"),
            (False, True, "revisiting"),
            (True, True, "both"),
        ],
    )
    def test_status(self, solved: bool, revise: bool, status: str) -> None:
        t = Tracking(user_id="u", question_id=1, is_solved=solved, is_revise=revise)
        assert t.status == status

    def test_notes_max_length(self) -> None:
        with pytest.raises(ValidationError):
            Tracking(user_id="u", question_id=1, notes="x" * 1001)


class TestRequestMessage:
    def test_content_max_length(self) -> None:
        with pytest.raises(ValidationError):
            RequestMessage(sender_id="u", content="x" * 501)


class TestQuestionPage:
    def test_pages_rounds_up(self) -> None:
        page = QuestionPage(items=[], page=1, limit=20, total=41)
        assert page.pages == 3

    def test_to_dict_pagination(self) -> None:
        page = QuestionPage(
            items=[TrackedQuestion.from_question(_make_question())], page=2, limit=1, total=2,
        )
        data = page.to_dict()
        assert data["pagination"] == {"page": 2, "limit": 1, "total": 2, "pages": 2}
        item = data["data"][0]  # type: ignore[index]
        assert item["title"] == "Two Sum"
        assert item["acceptanceRate"] == 49.2
        assert item["trackingStatus"] is None
        assert item["companies"][0]["askedWithin"] == "30days"


class TestCamelCaseFields:
    def test_question_accepts_camel_case(self) -> None:
        q = Question.model_validate({
            "title": "Two Sum",
            "difficulty": "Easy",
            "link": "https://x/two-sum",
            "acceptanceRate": 49.2,
            "isActive": False,
            "companies": [
                {"company": "Google", "askedWithin": "30days", "lastAskedDate": "2025-03-01T00:00:00"},
            ],
        })
        assert q.acceptance_rate == 49.2
        assert q.is_active is False
        assert q.companies[0].asked_within == "30days"
        assert q.companies[0].last_asked_date == datetime(2025, 3, 1)

    def test_field_names_still_accepted(self) -> None:
        q = _make_question(acceptance_rate=30.0, is_active=False)
        assert q.acceptance_rate == 30.0
        assert q.is_active is False

    def test_unknown_question_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _make_question(acceptence_rate=49.2)

    def test_unknown_tag_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CompanyTag.model_validate({"company": "Google", "askedWhen": "30days"})

    def test_dump_by_alias(self) -> None:
        data = _make_question().model_dump(by_alias=True)
        assert data["acceptanceRate"] == 49.2
        assert data["companies"][0]["askedWithin"] == "30days"


class TestTrackedQuestion:
    def test_without_tracking(self) -> None:
        tq = TrackedQuestion.from_question(_make_question(id=3))
        assert tq.id == 3
        assert tq.tracking_status is None
        assert tq.user_notes is None

    def test_with_tracking(self) -> None:
        tracking = Tracking(user_id="u", question_id=3, is_solved=True, notes="hash map")
        tq = TrackedQuestion.from_question(_make_question(id=3), tracking)
        assert tq.tracking_status == "solved"
        assert tq.user_notes == "hash map"
        assert [c.company for c in tq.companies] == ["Google"]
