"""Configuration models and YAML loader for the question tracker."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_FEATURED_COMPANIES = ["Meta", "Apple", "Amazon", "Netflix", "Google"]


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/tracker.db"


class UploadsConfig(BaseModel):
    """Where uploaded CSV files are staged before ingestion."""

    dir: str = "data/uploads"
    keep_files: bool = False


class CatalogConfig(BaseModel):
    """Catalog query and statistics settings."""

    page_size: int = Field(default=20, ge=1, le=100)
    featured_companies: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FEATURED_COMPANIES),
    )
    top_companies: int = Field(default=12, ge=0)

    @field_validator("featured_companies")
    @classmethod
    def featured_not_empty(cls, v: list[str]) -> list[str]:
        cleaned = [name.strip() for name in v if name.strip()]
        if not cleaned:
            msg = "at least one featured company must be configured"
            raise ValueError(msg)
        return cleaned


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    uploads: UploadsConfig = Field(default_factory=UploadsConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
