"""Helpers for inspecting test repositories."""

from pathlib import Path

import git

from gitops_broker.storage.git_repository import SyncedRepository

TEST_BRANCH = "main"
TEST_AUTHOR = ("Test Broker", "broker@example.com")


def remote_file(remote_path: Path, relative_path: str) -> str:
    """Read a file from the tip of the remote branch."""
    return git.Repo(remote_path).git.show(f"{TEST_BRANCH}:{relative_path}")


def remote_log(remote_path: Path) -> list:
    """Commit messages on the remote branch, newest first."""
    return [c.message.strip() for c in git.Repo(remote_path).iter_commits(TEST_BRANCH)]


def commit_count(repository: SyncedRepository) -> int:
    return sum(1 for _ in repository.repo.iter_commits())


def write_and_commit(repository: SyncedRepository, relative_path: str, content: str, message: str) -> None:
    """Simulate another writer: change a file and commit it locally."""
    path = repository.path / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    assert repository.commit(message) is True
