from __future__ import annotations

from typer.testing import CliRunner

from conftest import FakeProcedureSource, requires_git
from spkeeper import cli
from spkeeper.errors import FetchError, QueryError
from spkeeper.repository import GitRepository

runner = CliRunner()


def _patch_source(monkeypatch, source) -> None:
    monkeypatch.setattr(cli, "create_source", lambda _config: source)


@requires_git
def test_sync_given_healthy_database_when_run_twice_then_second_run_reports_no_changes(
    tmp_path,
    monkeypatch,
    orders_source,
) -> None:
    # Given
    _patch_source(monkeypatch, orders_source)
    args = ["sync", "-d", "orders", "-o", str(tmp_path)]

    # When
    first = runner.invoke(cli.app, args)
    second = runner.invoke(cli.app, args)

    # Then
    assert first.exit_code == 0, first.output
    assert "Creating initial commit containing 2 files" in first.output
    assert second.exit_code == 0, second.output
    assert "No changes to commit" in second.output
    assert len(GitRepository(tmp_path).head_commits("master")) == 1


@requires_git
def test_sync_given_some_failing_procedures_when_run_then_successes_are_committed_and_exit_is_non_zero(
    tmp_path,
    monkeypatch,
) -> None:
    # Given
    source = FakeProcedureSource({"GetOrder": ["SELECT 1"]}, failing={"Broken": FetchError("Broken", "bad row")})
    _patch_source(monkeypatch, source)

    # When
    result = runner.invoke(cli.app, ["sync", "-d", "orders", "-o", str(tmp_path), "-w", "2"])

    # Then
    assert result.exit_code == 1
    assert "1 errors occurred while saving stored procedures" in result.output
    repo = GitRepository(tmp_path)
    head = repo.resolve_head_commit("master")
    assert head is not None
    assert repo.tree_paths(head) == ["orders/GetOrder.sql"]


def test_sync_given_missing_output_dir_when_run_then_exits_before_touching_database(tmp_path, monkeypatch) -> None:
    # Given
    def explode(_config):
        raise AssertionError("database must not be contacted")

    monkeypatch.setattr(cli, "create_source", explode)

    # When
    result = runner.invoke(cli.app, ["sync", "-d", "orders", "-o", str(tmp_path / "missing")])

    # Then
    assert result.exit_code == 2
    assert not (tmp_path / "missing").exists()


def test_sync_given_listing_failure_when_run_then_exits_non_zero_without_repository(tmp_path, monkeypatch) -> None:
    # Given
    class FailingListSource(FakeProcedureSource):
        def list_procedure_names(self) -> list[str]:
            raise QueryError("Could not list stored procedures: permission denied")

    _patch_source(monkeypatch, FailingListSource({}))

    # When
    result = runner.invoke(cli.app, ["sync", "-d", "orders", "-o", str(tmp_path)])

    # Then
    assert result.exit_code == 1
    assert "permission denied" in result.output
    assert not (tmp_path / ".git").exists()


def test_doctor_given_output_dir_when_run_then_reports_environment(tmp_path) -> None:
    # Given
    args = ["doctor", "-o", str(tmp_path)]

    # When
    result = runner.invoke(cli.app, args)

    # Then
    assert result.exit_code == 0
    assert "git available:" in result.output
    assert "Output dir exists: True" in result.output


@requires_git
def test_doctor_given_synced_repository_when_run_then_reports_commit_count_and_tip(
    tmp_path,
    monkeypatch,
    orders_source,
) -> None:
    # Given
    _patch_source(monkeypatch, orders_source)
    runner.invoke(cli.app, ["sync", "-d", "orders", "-o", str(tmp_path)])
    tip = GitRepository(tmp_path).resolve_head_commit("master")

    # When
    result = runner.invoke(cli.app, ["doctor", "-o", str(tmp_path)])

    # Then
    assert result.exit_code == 0, result.output
    assert "Commits on master: 1" in result.output
    assert f"Tip: {tip} Update with procedures from database 'orders'" in result.output
    assert "Tracked files at tip: 2" in result.output
