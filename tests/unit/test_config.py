"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.core.config import (
    DEFAULT_FEATURED_COMPANIES,
    CatalogConfig,
    DatabaseConfig,
    Settings,
    UploadsConfig,
)


class TestDatabaseConfig:
    def test_default_path(self) -> None:
        d = DatabaseConfig()
        assert d.path == "data/tracker.db"


class TestUploadsConfig:
    def test_defaults(self) -> None:
        u = UploadsConfig()
        assert u.dir == "data/uploads"
        assert u.keep_files is False


class TestCatalogConfig:
    def test_defaults(self) -> None:
        c = CatalogConfig()
        assert c.page_size == 20
        assert c.featured_companies == DEFAULT_FEATURED_COMPANIES
        assert c.top_companies == 12

    def test_page_size_bounds(self) -> None:
        with pytest.raises(ValidationError):
            CatalogConfig(page_size=0)
        with pytest.raises(ValidationError):
            CatalogConfig(page_size=101)

    def test_featured_companies_required(self) -> None:
        with pytest.raises(ValidationError, match="at least one featured company"):
            CatalogConfig(featured_companies=["  "])

    def test_featured_companies_stripped(self) -> None:
        c = CatalogConfig(featured_companies=[" Google ", "", "Meta"])
        assert c.featured_companies == ["Google", "Meta"]

    def test_default_list_not_shared(self) -> None:
        a = CatalogConfig()
        a.featured_companies.append("Stripe")
        assert "Stripe" not in CatalogConfig().featured_companies


class TestSettings:
    def test_load_from_yaml(self, tmp_path: Path) -> None:
        yaml_content = dedent("""\
            database:
              path: data/test.db
            uploads:
              dir: data/incoming
              keep_files: true
            catalog:
              page_size: 50
              featured_companies: [Google, Stripe]
              top_companies: 5
        """)
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml_content)

        settings = Settings.from_yaml(config_file)

        assert settings.database.path == "data/test.db"
        assert settings.uploads.dir == "data/incoming"
        assert settings.uploads.keep_files is True
        assert settings.catalog.page_size == 50
        assert settings.catalog.featured_companies == ["Google", "Stripe"]
        assert settings.catalog.top_companies == 5

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")
        settings = Settings.from_yaml(config_file)
        assert settings.database.path == "data/tracker.db"
        assert settings.catalog.page_size == 20

    def test_file_not_found(self) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml("/nonexistent/path.yaml")

    def test_invalid_page_size_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("catalog:\n  page_size: 500\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(config_file)

    def test_load_example_settings(self) -> None:
        """The shipped example config/settings.yaml must be valid."""
        settings = Settings.from_yaml(Path(__file__).parents[2] / "config" / "settings.yaml")
        assert settings.database.path == "data/tracker.db"
        assert "Google" in settings.catalog.featured_companies
