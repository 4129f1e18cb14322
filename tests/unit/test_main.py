"""Tests for the command line entry point."""

import json
from pathlib import Path

import pytest
import yaml

import main


@pytest.fixture
def config(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "database": {"path": str(tmp_path / "tracker.db")},
        "uploads": {"dir": str(tmp_path / "uploads")},
        "catalog": {"page_size": 5, "featured_companies": ["Google"]},
    }))
    return path


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> str:
    main.main(list(argv))
    return capsys.readouterr().out


class TestParseArgs:
    def test_import(self) -> None:
        args = main.parse_args([
            "import", "--file", "g.csv", "--company", "Google", "--asked-within", "30days",
        ])
        assert args.command == "import"
        assert args.asked_within == "30days"
        assert args.keep_file is False
        assert args.config == "config/settings.yaml"

    def test_invalid_bucket(self) -> None:
        with pytest.raises(SystemExit):
            main.parse_args([
                "import", "--file", "g.csv", "--company", "Google", "--asked-within", "week",
            ])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            main.parse_args([])


class TestCommands:
    def test_import_then_query(
        self, tmp_path: Path, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        csv_path = tmp_path / "google.csv"
        csv_path.write_text(
            "Title,Difficulty,URL,Acceptance %\n"
            "Two Sum,Easy,https://x/two-sum,49.2\n"
            ",Easy,https://x/blank,10\n",
        )

        out = _run(
            capsys, "import", "--file", str(csv_path), "--company", "Google",
            "--asked-within", "30days", "--config", str(config),
        )
        assert "1 created, 0 updated, 1 errors" in out
        assert csv_path.exists()
        assert list((tmp_path / "uploads").iterdir()) == []

        out = _run(capsys, "questions", "--company", "google", "--config", str(config))
        data = json.loads(out)
        assert [q["title"] for q in data["data"]] == ["Two Sum"]
        assert data["pagination"]["limit"] == 5

        out = _run(capsys, "metadata", "--config", str(config))
        assert json.loads(out)["lastUpdated"] > 0

        out = _run(capsys, "stats", "--config", str(config))
        assert json.loads(out)["featured"] == [{"name": "Google", "count": 1}]

    def test_add_questions_from_yaml(
        self, tmp_path: Path, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        questions = tmp_path / "questions.yaml"
        questions.write_text(yaml.safe_dump({"questions": [
            {"title": "LRU Cache", "difficulty": "Medium", "link": "https://x/lru", "topics": ["Design"]},
        ]}))
        out = _run(capsys, "add-questions", "--file", str(questions), "--config", str(config))
        assert json.loads(out)["created"] == 1

        out = _run(capsys, "topics", "--config", str(config))
        assert json.loads(out) == ["Design"]

    def test_error_exits_nonzero(
        self, tmp_path: Path, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        csv_path = tmp_path / "empty.csv"
        csv_path.write_text("Title,Difficulty,URL\n")
        with pytest.raises(SystemExit) as exc:
            main.main([
                "import", "--file", str(csv_path), "--company", "Google",
                "--asked-within", "30days", "--config", str(config),
            ])
        assert exc.value.code == 1
        assert "Error: No rows supplied" in capsys.readouterr().err

    def test_missing_config_exits(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            main.main(["metadata", "--config", str(tmp_path / "nope.yaml")])
        assert exc.value.code == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_stats_views(
        self, tmp_path: Path, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        questions = tmp_path / "questions.json"
        questions.write_text(json.dumps([
            {
                "title": "Two Sum",
                "difficulty": "Easy",
                "link": "https://x/two-sum",
                "companies": [{"company": "Google", "askedWithin": "30days"}],
            },
        ]))
        _run(capsys, "add-questions", "--file", str(questions), "--config", str(config))

        out = _run(capsys, "question-stats", "--config", str(config))
        stats = json.loads(out)
        assert stats["byDifficulty"]["Easy"] == 1
        assert stats["byTimeRange"]["last30Days"] == 1

        out = _run(capsys, "admin-stats", "--config", str(config))
        admin_data = json.loads(out)
        assert admin_data["totalQuestions"] == 1
        assert admin_data["recentQuestions"][0]["title"] == "Two Sum"

        out = _run(capsys, "questions", "--user", "u1", "--config", str(config))
        assert json.loads(out)["data"][0]["trackingStatus"] is None
