"""Fetch stored procedures concurrently and write one ``.sql`` file per procedure."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Protocol

from spkeeper.errors import MalformedRowError, OutputDirError, SaveBatchError
from spkeeper.models import SaveOutcome, SaveReport, SyncConfig


class BodyFetcher(Protocol):
    def fetch_procedure_body(self, name: str) -> Sequence[str]: ...


def procedure_path(out_dir: Path, name: str) -> Path:
    return out_dir / f"{name}.sql"


def write_procedure_body(fragments: Iterable[str], path: Path) -> None:
    """Write fragments to ``path`` in order, without newline translation."""
    with path.open("w", encoding="utf-8", newline="") as handle:
        for fragment in fragments:
            handle.write(fragment)


def save_procedure(source: BodyFetcher, name: str, out_dir: Path) -> SaveOutcome:
    """Fetch one procedure and write it to disk.

    Never raises: any failure comes back as an outcome tagged with ``name``.
    """
    path = procedure_path(out_dir, name)
    try:
        fragments = source.fetch_procedure_body(name)
        write_procedure_body(fragments, path)
    except Exception as exc:
        return SaveOutcome(name=name, error=exc)
    return SaveOutcome(name=name, path=path)


def ensure_output_dir(out_dir: Path) -> Path:
    try:
        out_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputDirError(f"Could not create output directory {out_dir}: {exc}") from exc
    return out_dir


def save_all_procedures(
    names: Sequence[str],
    source: BodyFetcher,
    config: SyncConfig,
    on_outcome: Callable[[SaveOutcome], None] | None = None,
) -> SaveReport:
    """Save every named procedure under ``config.database_dir``.

    At most ``config.workers`` fetch-and-write operations run at once. Every
    name produces exactly one outcome, and a failing procedure never stops
    the rest of the batch. Malformed-row failures are downgraded to warnings
    when ``config.warn_on_malformed`` is set.

    Args:
        names: Procedure names to save.
        source: Object providing ``fetch_procedure_body``.
        config: Validated run configuration.
        on_outcome: Called on the calling thread once per outcome, in
            completion order.

    Returns:
        The aggregated report for the batch.

    Raises:
        OutputDirError: If the database directory cannot be created.
    """
    out_dir = ensure_output_dir(config.database_dir)
    report = SaveReport()
    if not names:
        return report

    workers = min(config.workers, len(names))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="spkeeper-save") as executor:
        futures = [executor.submit(save_procedure, source, name, out_dir) for name in names]

        for future in as_completed(futures):
            outcome = future.result()
            report.outcomes.append(outcome)
            if not outcome.ok:
                if config.warn_on_malformed and isinstance(outcome.error, MalformedRowError):
                    report.warnings.append(outcome)
                else:
                    report.failures.append(outcome)
            if on_outcome:
                on_outcome(outcome)

    return report


def ensure_saved(report: SaveReport) -> None:
    """Raise ``SaveBatchError`` when the report holds any hard failure."""
    if report.failure_count:
        raise SaveBatchError(report.failure_count)
