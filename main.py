"""CLI entry point for the interview question tracker."""

import argparse
import json
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Any

import yaml

from src.catalog.admin import admin_stats
from src.catalog.query import (
    QuestionFilters,
    company_stats,
    home_stats,
    list_topics,
    query_questions,
    question_stats,
)
from src.core.config import Settings
from src.core.db import init_db
from src.core.errors import TrackerError
from src.core.schemas import ASKED_WITHIN_BUCKETS, DIFFICULTIES
from src.ingest.metadata import read_last_updated
from src.ingest.orchestrator import create_questions, ingest_csv_file, stage_upload


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Interview question tracker - company-tagged question catalog",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- import subcommand ---
    import_parser = subparsers.add_parser("import", help="Import a company's questions from CSV")
    import_parser.add_argument("--file", required=True, help="Path to the CSV file")
    import_parser.add_argument("--company", required=True, help="Company that asked the questions")
    import_parser.add_argument(
        "--asked-within",
        required=True,
        choices=ASKED_WITHIN_BUCKETS,
        help="How recently the company asked these questions",
    )
    import_parser.add_argument(
        "--keep-file",
        action="store_true",
        help="Keep the staged upload copy after ingestion",
    )
    _add_common(import_parser)

    # --- add-questions subcommand ---
    add_parser = subparsers.add_parser(
        "add-questions",
        help="Create questions from a YAML or JSON list",
    )
    add_parser.add_argument("--file", required=True, help="Path to YAML/JSON question list")
    _add_common(add_parser)

    # --- metadata subcommand ---
    metadata_parser = subparsers.add_parser("metadata", help="Show catalog last-updated stamp")
    _add_common(metadata_parser)

    # --- questions subcommand ---
    questions_parser = subparsers.add_parser("questions", help="List catalog questions")
    questions_parser.add_argument("--company", help="Company name (substring, case-insensitive)")
    questions_parser.add_argument("--difficulty", choices=DIFFICULTIES)
    questions_parser.add_argument("--topics", help="Comma-separated topics (any match)")
    questions_parser.add_argument("--asked-within", choices=ASKED_WITHIN_BUCKETS)
    questions_parser.add_argument("--search", help="Free text over title and topics")
    questions_parser.add_argument("--page", type=int, default=1)
    questions_parser.add_argument("--limit", type=int, help="Page size (default from settings)")
    questions_parser.add_argument("--user", help="Attach this user's progress to each question")
    _add_common(questions_parser)

    # --- aggregate views ---
    for name, help_text in (
        ("companies", "Question counts per company"),
        ("topics", "All distinct topics"),
        ("stats", "Catalog summary statistics"),
        ("question-stats", "Question counts by difficulty and recency"),
        ("admin-stats", "Whole-catalog totals, inactive questions included"),
    ):
        _add_common(subparsers.add_parser(name, help=help_text))

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str) -> Settings:
    """Load settings, falling back to defaults when the default file is absent."""
    if path == "config/settings.yaml" and not Path(path).exists():
        return Settings()
    return Settings.from_yaml(path)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_import(args: argparse.Namespace, settings: Settings, conn: sqlite3.Connection) -> None:
    """Handle import subcommand."""
    staged = stage_upload(args.file, settings.uploads.dir)
    keep = args.keep_file or settings.uploads.keep_files
    report = ingest_csv_file(
        conn,
        staged,
        args.company,
        args.asked_within,
        remove_source=not keep,
    )
    print(f"Import complete: {report.created} created, {report.updated} updated, "
          f"{report.errors} errors.")
    _print_json(report.to_dict())


def cmd_add_questions(args: argparse.Namespace, conn: sqlite3.Connection) -> None:
    """Handle add-questions subcommand."""
    path = Path(args.file)
    if not path.exists():
        msg = f"Questions file not found: {path}"
        raise FileNotFoundError(msg)
    # JSON is a subset of YAML, so one loader covers both
    data = yaml.safe_load(path.read_text())
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        msg = "Questions file must contain a list of questions"
        raise ValueError(msg)
    report = create_questions(conn, data)
    _print_json(report.to_dict())


def cmd_questions(args: argparse.Namespace, settings: Settings, conn: sqlite3.Connection) -> None:
    """Handle questions subcommand."""
    filters = QuestionFilters(
        company=args.company,
        difficulty=args.difficulty,
        topics=args.topics or [],
        asked_within=args.asked_within,
        search=args.search,
        page=args.page,
        limit=args.limit or settings.catalog.page_size,
    )
    _print_json(query_questions(conn, filters, user_id=args.user).to_dict())


def run_command(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        if args.command == "import":
            cmd_import(args, settings, conn)
        elif args.command == "add-questions":
            cmd_add_questions(args, conn)
        elif args.command == "metadata":
            _print_json(read_last_updated(conn))
        elif args.command == "questions":
            cmd_questions(args, settings, conn)
        elif args.command == "companies":
            _print_json({"companies": company_stats(conn)})
        elif args.command == "topics":
            _print_json(list_topics(conn))
        elif args.command == "stats":
            _print_json(home_stats(
                conn,
                settings.catalog.featured_companies,
                settings.catalog.top_companies,
            ))
        elif args.command == "question-stats":
            _print_json(question_stats(conn))
        elif args.command == "admin-stats":
            stats = admin_stats(conn)
            stats["recentQuestions"] = [
                q.model_dump(mode="json", by_alias=True) for q in stats["recentQuestions"]
            ]
            _print_json(stats)
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        run_command(args, settings)
    except (TrackerError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
