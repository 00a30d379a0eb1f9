"""Tests for the synchronized git working copy."""

from unittest.mock import patch

import git
import pytest
from git.exc import GitCommandError

from gitops_broker.config import GitConfig
from gitops_broker.exceptions import PushError, RepositoryError, SyncError
from gitops_broker.storage.git_repository import SyncedRepository
from tests.helpers import TEST_BRANCH, commit_count, remote_file, remote_log, write_and_commit


class TestRepositoryBootstrap:
    """Test opening, cloning and initializing working copies."""

    def test_clone_from_remote(self, synced_repo):
        """An empty local path is cloned from the remote."""
        assert (synced_repo.path / "README.md").is_file()
        assert synced_repo.repo.active_branch.name == TEST_BRANCH
        assert synced_repo.last_commit_message() == "Initial commit"

    def test_reopen_existing_working_copy(self, synced_repo):
        """Constructing again on the same path reuses the working copy."""
        reopened = SyncedRepository(synced_repo.config)
        assert reopened.head_commit() == synced_repo.head_commit()

    def test_commit_identity_is_configured(self, synced_repo):
        reader = synced_repo.repo.config_reader()
        assert reader.get_value("user", "name") == "Test Broker"
        assert reader.get_value("user", "email") == "broker@example.com"

    def test_local_only_repository(self, tmp_path):
        """Without a remote, pull and push are skipped."""
        repository = SyncedRepository(GitConfig(local_path=str(tmp_path / "local")))

        repository.pull()
        (repository.path / "file.txt").write_text("content\n")
        assert repository.commit("Add file") is True
        repository.push()

        assert repository.repo.active_branch.name == "main"
        assert repository.last_commit_message() == "Add file"

    def test_non_repository_directory_is_rejected(self, tmp_path):
        """A populated directory that is not a repository is never overwritten."""
        target = tmp_path / "occupied"
        target.mkdir()
        (target / "data.txt").write_text("keep me")

        with pytest.raises(RepositoryError):
            SyncedRepository(GitConfig(local_path=str(target)))

    def test_open_existing_uses_repository_remote(self, synced_repo, remote_repo):
        """The CLI attaches to a clone using its own origin and branch."""
        attached = SyncedRepository.open_existing(synced_repo.path)

        assert attached.config.remote == str(remote_repo)
        assert attached.config.remote_branch == TEST_BRANCH
        assert attached.has_remote

    def test_open_existing_requires_repository(self, tmp_path):
        with pytest.raises(RepositoryError):
            SyncedRepository.open_existing(tmp_path)


class TestCommit:
    """Test commit idempotency."""

    def test_commit_without_changes_is_noop(self, synced_repo):
        """Repeated commits without changes create nothing."""
        before = commit_count(synced_repo)

        assert synced_repo.commit("Nothing") is False
        assert synced_repo.commit("Still nothing") is False
        assert commit_count(synced_repo) == before

    def test_commit_stages_new_and_modified_files(self, synced_repo):
        """All changes are staged, and a second commit is a no-op."""
        (synced_repo.path / "instances" / "a").mkdir(parents=True)
        (synced_repo.path / "instances" / "a" / "instance.yml").write_text("id: a\n")
        (synced_repo.path / "README.md").write_text("changed\n")
        before = commit_count(synced_repo)

        assert synced_repo.commit("Add instance a") is True
        assert synced_repo.commit("Add instance a") is False

        assert commit_count(synced_repo) == before + 1
        assert synced_repo.last_commit_message() == "Add instance a"
        assert not synced_repo.repo.is_dirty(untracked_files=True)

    def test_commit_with_explicit_author(self, synced_repo):
        (synced_repo.path / "file.txt").write_text("x\n")

        synced_repo.commit("Operator change", author=git.Actor("Operator", "ops@example.com"))

        head = synced_repo.repo.head.commit
        assert head.author.name == "Operator"
        assert head.author.email == "ops@example.com"


class TestPull:
    """Test fast-forward and rebase pulls."""

    def test_fast_forward_pull(self, clone_factory):
        """Remote commits are fast-forwarded into a clean clone."""
        writer = clone_factory("writer")
        reader = clone_factory("reader")
        write_and_commit(writer, "instances/a/instance.yml", "id: a\n", "Add a")
        writer.push()

        reader.pull()

        assert (reader.path / "instances" / "a" / "instance.yml").read_text() == "id: a\n"
        assert reader.head_commit() == writer.head_commit()

    def test_diverged_pull_rebases_local_commits(self, clone_factory):
        """Unpushed local commits are replayed on top of the remote tip."""
        first = clone_factory("first")
        second = clone_factory("second")
        write_and_commit(first, "instances/a/instance.yml", "id: a\n", "Add a")
        first.push()
        write_and_commit(second, "instances/b/instance.yml", "id: b\n", "Add b")

        second.pull()

        head = second.repo.head.commit
        assert head.message.strip() == "Add b"
        assert head.parents[0].hexsha == first.head_commit()
        assert (second.path / "instances" / "a" / "instance.yml").is_file()
        assert (second.path / "instances" / "b" / "instance.yml").is_file()

    def test_conflicting_pull_raises_and_restores_working_copy(self, clone_factory):
        """Content conflicts are never auto-resolved."""
        first = clone_factory("first")
        second = clone_factory("second")
        write_and_commit(first, "instances/a/status.yml", "status: succeeded\n", "Pipeline result")
        first.push()
        write_and_commit(second, "instances/a/status.yml", "status: in progress\n", "Broker reset")
        local_head = second.head_commit()

        with pytest.raises(SyncError):
            second.pull()

        assert second.head_commit() == local_head
        assert (second.path / "instances" / "a" / "status.yml").read_text() == "status: in progress\n"
        assert not (second.path / ".git" / "rebase-merge").exists()
        assert not (second.path / ".git" / "rebase-apply").exists()

    def test_pull_from_unreachable_remote(self, tmp_path, synced_repo):
        synced_repo.repo.remote("origin").set_url(str(tmp_path / "missing.git"))

        with pytest.raises(SyncError):
            synced_repo.pull()


class TestPush:
    """Test push with a single bounded retry."""

    def test_push_publishes_commits(self, synced_repo, remote_repo):
        write_and_commit(synced_repo, "instances/a/instance.yml", "id: a\n", "Add a")

        synced_repo.push()

        assert remote_log(remote_repo)[0] == "Add a"
        assert remote_file(remote_repo, "instances/a/instance.yml") == "id: a"

    def test_rejected_push_pulls_and_retries(self, clone_factory, remote_repo):
        """A push behind the remote is rebased and retried once."""
        first = clone_factory("first")
        second = clone_factory("second")
        write_and_commit(first, "instances/a/instance.yml", "id: a\n", "Add a")
        first.push()
        write_and_commit(second, "instances/b/instance.yml", "id: b\n", "Add b")

        second.push()

        assert remote_log(remote_repo)[:2] == ["Add b", "Add a"]

    def test_rejected_push_with_conflict_surfaces_sync_error(self, clone_factory):
        first = clone_factory("first")
        second = clone_factory("second")
        write_and_commit(first, "instances/a/status.yml", "status: failed\n", "Pipeline result")
        first.push()
        write_and_commit(second, "instances/a/status.yml", "status: in progress\n", "Broker reset")

        with pytest.raises(SyncError):
            second.push()

    def test_second_rejection_raises_push_error(self, synced_repo):
        """Exactly one pull and one retry, then PushError."""
        rejection = GitCommandError("git push", 1, stderr="rejected (fetch first)")

        with patch.object(synced_repo, '_push_once', side_effect=[rejection, rejection]) as push_once, \
                patch.object(synced_repo, 'pull') as pull:
            with pytest.raises(PushError) as exc_info:
                synced_repo.push()

        assert push_once.call_count == 2
        assert pull.call_count == 1
        assert exc_info.value.retryable

    def test_retry_succeeds_after_one_rejection(self, synced_repo):
        rejection = GitCommandError("git push", 1, stderr="rejected (fetch first)")

        with patch.object(synced_repo, '_push_once', side_effect=[rejection, None]) as push_once, \
                patch.object(synced_repo, 'pull') as pull:
            synced_repo.push()

        assert push_once.call_count == 2
        assert pull.call_count == 1

    def test_push_without_rejection_does_not_pull(self, synced_repo):
        with patch.object(synced_repo, '_push_once') as push_once, \
                patch.object(synced_repo, 'pull') as pull:
            synced_repo.push()

        assert push_once.call_count == 1
        pull.assert_not_called()


class TestRestore:
    """Test discarding uncommitted changes under one path."""

    def test_restore_reverts_tracked_and_removes_new_files(self, synced_repo):
        write_and_commit(synced_repo, "instances/a/instance.yml", "id: a\n", "Add a")
        (synced_repo.path / "instances" / "a" / "instance.yml").write_text("id: changed\n")
        (synced_repo.path / "instances" / "a" / "status.yml").write_text("status: failed\n")
        (synced_repo.path / "instances" / "b").mkdir()
        (synced_repo.path / "instances" / "b" / "instance.yml").write_text("id: b\n")
        synced_repo.repo.git.add(all=True)

        synced_repo.restore(synced_repo.path / "instances" / "a")

        assert (synced_repo.path / "instances" / "a" / "instance.yml").read_text() == "id: a\n"
        assert not (synced_repo.path / "instances" / "a" / "status.yml").exists()
        # Other paths are untouched
        assert (synced_repo.path / "instances" / "b" / "instance.yml").is_file()
        assert synced_repo.repo.git.diff("--cached", "--name-only") == "instances/b/instance.yml"

    def test_restore_before_first_commit(self, tmp_path):
        repository = SyncedRepository(GitConfig(local_path=str(tmp_path / "local")))
        target = repository.path / "instances" / "a"
        target.mkdir(parents=True)
        (target / "instance.yml").write_text("id: a\n")
        repository.repo.git.add(all=True)

        repository.restore(target)

        assert not target.exists()
        assert repository.commit("Nothing left") is False
