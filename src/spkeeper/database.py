"""Read stored procedure names and definitions from SQL Server."""

from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from spkeeper.errors import ConnectionFailedError, FetchError, MalformedRowError, QueryError
from spkeeper.models import DatabaseConfig


class ProcedureSource:
    """Lists procedures and fetches their text through a pooled engine.

    The engine is shared by every save worker. Each call checks out its own
    pooled connection, so concurrent fetches never share a cursor.
    """

    LIST_SQL = "SELECT ROUTINE_NAME FROM INFORMATION_SCHEMA.ROUTINES WHERE ROUTINE_TYPE = 'PROCEDURE'"
    FETCH_SQL = "EXEC sp_helptext :name"

    def __init__(self, url: URL | str, pool_size: int = 5, engine: Engine | None = None):
        self.url = url
        self.pool_size = pool_size
        self._engine = engine

    @classmethod
    def from_config(cls, config: DatabaseConfig, pool_size: int = 5) -> "ProcedureSource":
        return cls(config.url(), pool_size=pool_size)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(
                self.url,
                pool_size=self.pool_size,
                max_overflow=0,
                pool_pre_ping=True,
            )
        return self._engine

    def connect(self) -> None:
        """Open and release one connection to prove the server is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise ConnectionFailedError(f"Could not connect to database: {exc}") from exc

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def list_procedure_names(self) -> list[str]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(text(self.LIST_SQL)).fetchall()
        except SQLAlchemyError as exc:
            raise QueryError(f"Could not list stored procedures: {exc}") from exc
        return [row[0] for row in rows]

    def fetch_procedure_body(self, name: str) -> list[str]:
        """Return the definition of ``name`` as the ordered text fragments the server sends.

        Raises:
            MalformedRowError: A row is not a single text column.
            FetchError: The query itself failed.
        """
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(text(self.FETCH_SQL), {"name": name}).fetchall()
        except SQLAlchemyError as exc:
            raise FetchError(name, str(exc)) from exc

        fragments: list[str] = []
        for index, row in enumerate(rows):
            if len(row) != 1:
                raise MalformedRowError(name, f"row {index} has {len(row)} columns, expected 1")
            value = row[0]
            if value is None:
                continue
            if not isinstance(value, str):
                raise MalformedRowError(name, f"row {index} is {type(value).__name__}, expected text")
            fragments.append(value)
        return fragments

    def __enter__(self) -> "ProcedureSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
