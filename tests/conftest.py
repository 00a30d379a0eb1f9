"""Pytest configuration and fixtures."""

import git
import pytest

from gitops_broker.config import GitConfig
from gitops_broker.models.instance import InstanceRecord
from gitops_broker.services.lifecycle import LifecycleCoordinator
from gitops_broker.storage.file_store import FileInstanceStore
from gitops_broker.storage.git_repository import SyncedRepository
from tests.helpers import TEST_AUTHOR, TEST_BRANCH


def _seed_identity(repo: git.Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", TEST_AUTHOR[0])
        writer.set_value("user", "email", TEST_AUTHOR[1])


@pytest.fixture
def remote_repo(tmp_path):
    """Create a bare remote repository seeded with an initial commit."""
    remote_path = tmp_path / "remote.git"
    remote = git.Repo.init(remote_path, bare=True)
    remote.git.symbolic_ref("HEAD", f"refs/heads/{TEST_BRANCH}")

    seed_path = tmp_path / "seed"
    seed = git.Repo.clone_from(str(remote_path), seed_path)
    _seed_identity(seed)
    (seed_path / "README.md").write_text("# Service instances\n")
    seed.git.add(all=True)
    seed.git.commit("-m", "Initial commit")
    seed.git.push("origin", f"HEAD:refs/heads/{TEST_BRANCH}")

    return remote_path


@pytest.fixture
def clone_factory(tmp_path, remote_repo):
    """Create independent working copies of the remote, like separate brokers."""

    def _clone(name: str) -> SyncedRepository:
        return SyncedRepository(GitConfig(
            local_path=str(tmp_path / name),
            remote=str(remote_repo),
            remote_branch=TEST_BRANCH,
            author_name=TEST_AUTHOR[0],
            author_email=TEST_AUTHOR[1],
        ))

    return _clone


@pytest.fixture
def synced_repo(clone_factory):
    """Working copy used by the broker under test."""
    return clone_factory("broker")


@pytest.fixture
def store(synced_repo):
    """Instance store rooted in the broker working copy."""
    return FileInstanceStore(synced_repo.path)


@pytest.fixture
def coordinator(synced_repo):
    """Lifecycle coordinator on the broker working copy."""
    lifecycle = LifecycleCoordinator(synced_repo)
    yield lifecycle
    lifecycle.close()


@pytest.fixture
def instance_record():
    """A provisioning request as it is stored."""
    return InstanceRecord(
        id="e4bd6a78-7e05-4d5a-97b8-f8c5d1c710ab",
        service_definition_id="d40133dd-8373-4c25-8014-fde98f38a728",
        plan_id="a13edcdf-eb54-44d3-8902-8f24d5acb07e",
        parameters={"size": "small"},
        context={"platform": "cloudfoundry"},
    )
