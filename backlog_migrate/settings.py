"""Settings schema for the Backlog markdown migration.

This module defines the Pydantic settings model used by the configuration
loader. Every value can be provided through a ``BACKLOG_MIGRATE_*``
environment variable or overridden from the YAML configuration file.
"""

from pathlib import Path
from typing import Annotated
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from backlog_migrate.type_definitions import RULE_IDS


class Settings(BaseSettings):
    """Application settings with validation and environment variable support."""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
        env_prefix="BACKLOG_MIGRATE_",
        validate_assignment=True,
    )

    # ========================================================================
    # BACKLOG CONNECTION (BACKLOG_MIGRATE_SPACE, _DOMAIN, _API_KEY, ...)
    # ========================================================================

    space: str = Field(default="", description="Backlog space id (subdomain)")
    domain: str = Field(default="backlog.com", description="Backlog domain")
    api_key: str = Field(default="", description="Backlog API key")
    base_url: str | None = Field(
        default=None, description="Explicit base URL overriding space and domain",
    )
    http_timeout: float = Field(
        default=30.0, gt=0, le=600, description="HTTP request timeout in seconds",
    )
    page_size: int = Field(
        default=100, ge=1, le=100, description="Page size for list endpoints",
    )
    max_retries: int = Field(
        default=3, ge=0, le=10, description="Retries for throttled or failed requests",
    )

    # ========================================================================
    # LOGGING
    # ========================================================================

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Path | None = Field(default=None, description="Optional log file")

    # ========================================================================
    # WORKSPACE AND GIT
    # ========================================================================

    workspace_dir: Path = Field(default=Path("."), description="Workspace directory")
    base_branch: str = Field(default="main", description="Base branch for new workspaces")
    git_executable: str = Field(default="git", description="Git executable")
    git_author_name: str = Field(
        default="backlog-migrate", description="Author name used for workspace commits",
    )
    git_author_email: str = Field(
        default="backlog-migrate@localhost",
        description="Author email used for workspace commits",
    )
    max_line_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Maximum size of a single JSON-lines record",
    )

    # ========================================================================
    # CONVERSION
    # ========================================================================

    line_break: str = Field(default="<br>", description="Replacement for &br;")
    unsafe_rules: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="Converter rule ids excluded from every run",
    )
    include_comments: bool = Field(
        default=False, description="Snapshot issue comments during init",
    )
    log_limit: int = Field(
        default=50, ge=1, description="Default number of audit entries shown by logs",
    )

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        """Validate base URL format."""
        if v is None or v == "":
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://")
        if not urlparse(v).netloc:
            raise ValueError("Base URL must have a valid hostname")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "NOTICE", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {", ".join(valid_levels)}')
        return v.upper()

    @field_validator("unsafe_rules", mode="before")
    @classmethod
    def split_unsafe_rules(cls, v: object) -> object:
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("unsafe_rules")
    @classmethod
    def validate_unsafe_rules(cls, v: list[str]) -> list[str]:
        """Validate converter rule ids."""
        unknown = [rule for rule in v if rule not in RULE_IDS]
        if unknown:
            raise ValueError(f"Unknown converter rules: {', '.join(unknown)}")
        return v

    def resolved_base_url(self) -> str:
        """Return the API base URL.

        Returns:
            str: ``base_url`` when set, otherwise ``https://{space}.{domain}``

        Raises:
            ValueError: If neither a base URL nor a space is configured

        """
        if self.base_url:
            return self.base_url
        if not self.space:
            msg = "Backlog space is not configured (set BACKLOG_MIGRATE_SPACE)"
            raise ValueError(msg)
        return f"https://{self.space}.{self.domain.strip('.')}"
