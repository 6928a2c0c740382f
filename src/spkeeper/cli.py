"""Typer-based CLI that snapshots stored procedures into a git repository."""

from __future__ import annotations

import shutil
from pathlib import Path

import typer

from spkeeper.committer import sync_repository
from spkeeper.database import ProcedureSource
from spkeeper.errors import ConfigError, MalformedRowError, RepoError, SpKeeperError
from spkeeper.models import SaveOutcome, SyncConfig, load_config
from spkeeper.pipeline import ensure_saved, save_all_procedures
from spkeeper.repository import GitRepository

app = typer.Typer(add_completion=False, help="spkeeper: keep stored procedure definitions under version control")

DEFAULT_WORKERS = 5


def _echo_step(step: int, total: int, message: str) -> None:
    """Print a normalized progress step line."""
    typer.echo(f"[{step}/{total}] {message}")


def _fail(exc: Exception, code: int = 1) -> typer.Exit:
    typer.echo(str(exc), err=True)
    return typer.Exit(code=code)


def _make_outcome_reporter(config: SyncConfig):
    """Build the per-procedure callback: progress to stdout, problems to stderr."""

    def report(outcome: SaveOutcome) -> None:
        if outcome.ok:
            typer.echo(f"    wrote {outcome.name} to: {outcome.path}")
        elif config.warn_on_malformed and isinstance(outcome.error, MalformedRowError):
            typer.echo(f"    warning: error reading SQL for {outcome.error}", err=True)
        else:
            typer.echo(f"    error: {outcome.error}", err=True)

    return report


def create_source(config: SyncConfig) -> ProcedureSource:
    return ProcedureSource.from_config(config.database, pool_size=config.workers)


def run_sync(config: SyncConfig) -> None:
    """Run one full sync: list, save, commit. Raises typed errors on fatal failures.

    A save batch with failures still commits the files that were written
    before ``SaveBatchError`` is raised.
    """
    total_steps = 4

    with create_source(config) as source:
        _echo_step(1, total_steps, f"Connecting to {config.database.host}/{config.database.database}")
        source.connect()

        _echo_step(2, total_steps, "Listing stored procedures")
        names = source.list_procedure_names()
        typer.echo(f"    found {len(names)} stored procedures")

        _echo_step(3, total_steps, f"Saving {len(names)} stored procedures with {config.workers} workers")
        report = save_all_procedures(names, source, config, on_outcome=_make_outcome_reporter(config))
        typer.echo(
            f"    saved={report.success_count} failed={report.failure_count} warnings={len(report.warnings)}"
        )

    _echo_step(4, total_steps, f"Committing changes in {config.output_dir}")
    result = sync_repository(config, progress_callback=lambda msg: typer.echo(f"    {msg}"))
    if result.committed:
        typer.echo(f"    commit {result.commit_id} ({len(result.changed_paths)} files)")
    else:
        typer.echo("No changes to commit")

    ensure_saved(report)


@app.command("sync")
def sync(
    host: str = typer.Option("127.0.0.1", "-h", "--host", envvar="SPKEEPER_HOST", help="Database host"),
    port: int = typer.Option(1433, "--port", envvar="SPKEEPER_PORT", help="Database port"),
    database: str = typer.Option("", "-d", "--database", envvar="SPKEEPER_DATABASE", help="Database name"),
    user: str = typer.Option("sa", "-u", "--user", envvar="SPKEEPER_USER", help="Database username"),
    password: str = typer.Option("", "-p", "--password", envvar="SPKEEPER_PASSWORD", help="Database password"),
    output: str = typer.Option("", "-o", "--output", envvar="SPKEEPER_OUTPUT", help="Output directory"),
    name: str = typer.Option("spkeeper", "-n", "--name", envvar="SPKEEPER_GIT_NAME", help="Git commit name"),
    email: str = typer.Option(
        "spkeeper@example.com", "-e", "--email", envvar="SPKEEPER_GIT_EMAIL", help="Git commit email"
    ),
    workers: int = typer.Option(DEFAULT_WORKERS, "-w", "--workers", min=1, help="Concurrent fetch workers"),
    warn_on_malformed: bool = typer.Option(
        False, "--warn-on-malformed", help="Report unreadable procedure rows as warnings instead of failures"
    ),
) -> None:
    """Save every stored procedure to disk and commit what changed."""
    try:
        config = load_config(
            host=host,
            port=port,
            database=database,
            user=user,
            password=password,
            output_dir=output,
            author_name=name,
            author_email=email,
            workers=workers,
            warn_on_malformed=warn_on_malformed,
        )
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        run_sync(config)
    except SpKeeperError as exc:
        raise _fail(exc) from exc


@app.command("doctor")
def doctor(
    output: Path = typer.Option(Path("."), "-o", "--output", help="Output directory"),
    branch: str = typer.Option("master", "--branch", help="Branch to inspect"),
) -> None:
    """Print local environment diagnostics used by the CLI."""
    git_path = shutil.which("git")
    typer.echo(f"git available: {bool(git_path)} ({git_path or 'not found'})")
    typer.echo(f"Output dir exists: {output.is_dir()} ({output})")
    is_repo = (output / ".git").exists()
    typer.echo(f"Output dir is a git repo: {is_repo}")
    if not is_repo or not git_path:
        return

    repo = GitRepository(output)
    try:
        commits = repo.head_commits(branch)
    except RepoError as exc:
        typer.echo(f"Branch {branch}: unusable ({exc})", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Commits on {branch}: {len(commits)}")
    if commits:
        tip = commits[0]
        summary = repo.commit_message(tip).splitlines()[0]
        typer.echo(f"Tip: {tip} {summary}")
        typer.echo(f"Tracked files at tip: {len(repo.tree_paths(tip))}")


if __name__ == "__main__":
    app()
