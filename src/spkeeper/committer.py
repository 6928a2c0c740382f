"""Stage freshly written procedure files and commit them only when something changed."""

from __future__ import annotations

from collections.abc import Callable

from spkeeper.models import CommitResult, SyncConfig
from spkeeper.repository import GitRepository, Signature, open_or_init_repository


def build_commit_message(database: str, changed_paths: list[str]) -> str:
    """Summary line naming the database, then the changed paths one per line."""
    paths = "\n".join(changed_paths)
    return f"Update with procedures from database '{database}'\n\nThese files have changed:\n\n{paths}"


def commit_changes(
    repo: GitRepository,
    config: SyncConfig,
    progress_callback: Callable[[str], None] | None = None,
    signature: Signature | None = None,
) -> CommitResult:
    """Commit every added or modified file under the database directory.

    Only ``<database>/`` is staged; other databases sharing the output root are
    left alone, and the commit tree is the parent tree with only ``<database>/``
    replaced, so anything else staged in the index stays out of the commit.
    When staging reports no changes, nothing is written and the returned result
    has ``committed == False``.

    Raises:
        RepoError: If staging, tree writing, head lookup, or commit creation fails.
    """
    database = config.database.database
    result = CommitResult(database=database)

    db_dir = config.database_dir
    if not db_dir.is_dir() or not any(child.is_file() for child in db_dir.iterdir()):
        return result

    parent = repo.resolve_head_commit(config.branch)
    changed: list[str] = []
    repo.stage_all(database, changed.append, base=parent)
    if not changed:
        return result

    tree = repo.write_tree(database, base=parent)
    message = build_commit_message(database, changed)
    signature = signature or Signature.now(config.author_name, config.author_email)

    if progress_callback:
        if parent:
            progress_callback(f"Committing updates to {len(changed)} files")
        else:
            progress_callback(f"Creating initial commit containing {len(changed)} files")

    commit_id = repo.create_commit(config.branch, signature, message, tree, parent=parent)
    return result.model_copy(
        update={"changed_paths": changed, "commit_id": commit_id, "parent_id": parent},
    )


def sync_repository(
    config: SyncConfig,
    progress_callback: Callable[[str], None] | None = None,
) -> CommitResult:
    """Open (or create) the repository at the output root and commit pending changes."""
    repo = open_or_init_repository(config.output_dir, branch=config.branch)
    return commit_changes(repo, config, progress_callback=progress_callback)
