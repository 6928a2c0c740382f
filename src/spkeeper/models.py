"""Pydantic models shared by the database, pipeline, and commit layers."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.engine import URL

from spkeeper.errors import ConfigError


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be empty")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_require_text)]


class DatabaseConfig(BaseModel):
    """Connection parameters for the SQL Server instance being snapshotted."""

    model_config = ConfigDict(frozen=True)

    host: NonEmptyStr = "127.0.0.1"
    port: int = Field(default=1433, ge=1, le=65535)
    database: NonEmptyStr
    user: str = "sa"
    password: str = ""

    def url(self) -> URL:
        """Build the SQLAlchemy URL for the ``mssql+pymssql`` dialect."""
        return URL.create(
            "mssql+pymssql",
            username=self.user or None,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class SyncConfig(BaseModel):
    """Everything one sync run needs, validated once at startup."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig
    output_dir: Path
    author_name: NonEmptyStr = "spkeeper"
    author_email: NonEmptyStr = "spkeeper@example.com"
    workers: int = Field(default=5, ge=1)
    warn_on_malformed: bool = False
    branch: NonEmptyStr = "master"

    @field_validator("output_dir", mode="before")
    @classmethod
    def _require_output_dir(cls, value: Any) -> Any:
        if value is None or not str(value).strip():
            raise ValueError("missing output directory")
        return value

    @field_validator("output_dir")
    @classmethod
    def _check_output_dir(cls, value: Path) -> Path:
        value = value.expanduser()
        if not value.exists():
            raise ValueError(f"output directory does not exist: {value}")
        if not value.is_dir():
            raise ValueError(f"output path is not a directory: {value}")
        return value

    @property
    def database_dir(self) -> Path:
        """Directory holding this database's ``.sql`` files."""
        return self.output_dir / self.database.database


def load_config(
    *,
    host: str,
    database: str,
    user: str,
    password: str,
    output_dir: Path | str | None,
    author_name: str,
    author_email: str,
    port: int = 1433,
    workers: int = 5,
    warn_on_malformed: bool = False,
) -> SyncConfig:
    """Validate raw option values into a ``SyncConfig``.

    Raises:
        ConfigError: Listing every field that failed validation.
    """
    try:
        return SyncConfig(
            database=DatabaseConfig(
                host=host,
                port=port,
                database=database,
                user=user,
                password=password,
            ),
            output_dir=output_dir,
            author_name=author_name,
            author_email=author_email,
            workers=workers,
            warn_on_malformed=warn_on_malformed,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc


class SaveOutcome(BaseModel):
    """Result of fetching and writing one procedure."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    path: Path | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SaveReport(BaseModel):
    """Aggregate of every outcome in one save batch."""

    outcomes: list[SaveOutcome] = Field(default_factory=list)
    failures: list[SaveOutcome] = Field(default_factory=list)
    warnings: list[SaveOutcome] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def ok(self) -> bool:
        return not self.failures


class CommitResult(BaseModel):
    """What the committer did for one database directory."""

    database: str
    changed_paths: list[str] = Field(default_factory=list)
    commit_id: str | None = None
    parent_id: str | None = None

    @property
    def committed(self) -> bool:
        return self.commit_id is not None
