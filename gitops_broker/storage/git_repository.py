"""Git working copy synchronized with a shared remote.

The working copy is the single shared mutable resource of the broker. All
public operations take the repository lock; callers that need several
operations to run as one unit (pull, mutate, commit, push) hold
``locked()`` around the whole sequence.

Pull policy: fast-forward first, rebase on divergence, never auto-resolve
content conflicts. Push policy: on rejection pull once and retry once.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from gitops_broker.config import GitConfig
from gitops_broker.exceptions import PushError, RepositoryError, SyncError

logger = logging.getLogger(__name__)


class SyncedRepository:
    """Local working copy of a remote git tree."""

    def __init__(self, git_config: GitConfig, configure_identity: bool = True):
        self.config = git_config
        self.path = Path(git_config.local_path).expanduser().resolve()
        self._lock = threading.RLock()
        self.repo = self._open()
        self._configure(configure_identity)

    @classmethod
    def open_existing(cls, path) -> 'SyncedRepository':
        """Attach to an existing working copy using its own remote and branch.

        The repository git config is left untouched; commit identity comes
        from the caller (see ``commit(author=...)``) or the user's git config.
        """
        try:
            repo = git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise RepositoryError("Not a git repository", path=str(path), cause=e) from e

        git_config = GitConfig(local_path=str(path))
        if repo.remotes:
            git_config.remote_name = repo.remotes[0].name
            git_config.remote = repo.remotes[0].url
        if repo.head.is_valid() and not repo.head.is_detached:
            git_config.remote_branch = repo.active_branch.name
        return cls(git_config, configure_identity=False)

    @property
    def has_remote(self) -> bool:
        return bool(self.config.remote)

    @property
    def remote_ref(self) -> str:
        return f"{self.config.remote_name}/{self.config.remote_branch}"

    @contextmanager
    def locked(self) -> Iterator['SyncedRepository']:
        """Hold exclusive access to the working copy."""
        with self._lock:
            yield self

    def pull(self) -> None:
        """Bring the working copy up to date with the remote branch.

        Raises:
            SyncError: if neither a fast-forward nor a rebase succeeds.
        """
        if not self.has_remote:
            logger.debug("No remote configured, skipping pull")
            return

        with self._lock:
            try:
                branch_exists = self._remote_branch_exists()
            except GitCommandError as e:
                raise SyncError(
                    f"Could not reach {self.config.remote_name}",
                    remote=self.config.remote,
                    cause=e
                ) from e

            if not branch_exists:
                logger.info(f"Remote branch {self.remote_ref} does not exist yet, nothing to pull")
                return

            try:
                self.repo.git.pull("--ff-only", self.config.remote_name, self.config.remote_branch)
                logger.debug(f"Fast-forwarded {self.path} to {self.remote_ref}")
                return
            except GitCommandError as e:
                logger.info(f"Fast-forward pull failed, falling back to rebase: {e.stderr.strip()}")

            try:
                self.repo.git.pull("--rebase", self.config.remote_name, self.config.remote_branch)
                logger.info(f"Rebased local commits onto {self.remote_ref}")
            except GitCommandError as e:
                self._abort_rebase()
                raise SyncError(
                    f"Could not reconcile local history with {self.remote_ref}",
                    remote=self.config.remote,
                    cause=e
                ) from e

    def commit(self, message: str, author: Optional[git.Actor] = None) -> bool:
        """Stage every change and commit it.

        Returns:
            True if a commit was created, False if the tree already matched HEAD.
        """
        with self._lock:
            try:
                self.repo.git.add(all=True)

                if not self._has_staged_changes():
                    logger.debug("Working tree matches HEAD, nothing to commit")
                    return False

                kwargs = {}
                if author is not None:
                    kwargs["author"] = f"{author.name} <{author.email}>"
                    kwargs["env"] = {
                        "GIT_COMMITTER_NAME": author.name,
                        "GIT_COMMITTER_EMAIL": author.email,
                    }
                self.repo.git.commit("-m", message, **kwargs)
            except GitCommandError as e:
                raise RepositoryError("Failed to commit changes", path=str(self.path), cause=e) from e

            logger.info(f"Committed {self.head_commit()[:8]}: {message}")
            return True

    def push(self) -> None:
        """Push local history, with a single pull-and-retry on rejection.

        Raises:
            SyncError: if the intermediate pull cannot reconcile history.
            PushError: if the retried push is rejected as well.
        """
        if not self.has_remote:
            logger.debug("No remote configured, skipping push")
            return

        with self._lock:
            if not self.repo.head.is_valid():
                logger.debug("No commits yet, nothing to push")
                return

            try:
                self._push_once()
                return
            except GitCommandError as e:
                logger.warning(f"Push to {self.remote_ref} rejected, pulling and retrying once: {e.stderr.strip()}")

            self.pull()

            try:
                self._push_once()
            except GitCommandError as e:
                raise PushError(
                    f"Push to {self.remote_ref} failed after one retry",
                    remote=self.config.remote,
                    cause=e
                ) from e
            logger.info(f"Pushed to {self.remote_ref} after retry")

    def restore(self, path) -> None:
        """Discard staged, modified and untracked changes under ``path``.

        Tracked files return to their HEAD content; files unknown to HEAD
        are removed.
        """
        pathspec = str(path)
        with self._lock:
            try:
                if self.repo.head.is_valid():
                    self.repo.git.reset("-q", "HEAD", "--", pathspec)
                    if self.repo.git.ls_tree("-r", "--name-only", "HEAD", "--", pathspec):
                        self.repo.git.checkout("HEAD", "--", pathspec)
                else:
                    self.repo.git.rm("-r", "-q", "--cached", "--ignore-unmatch", "--", pathspec)
                self.repo.git.clean("-f", "-d", "-q", "--", pathspec)
            except GitCommandError as e:
                raise RepositoryError(f"Failed to restore {pathspec}", path=str(self.path), cause=e) from e

            logger.info(f"Discarded uncommitted changes under {pathspec}")

    def last_commit_message(self) -> str:
        with self._lock:
            return self.repo.head.commit.message.strip()

    def head_commit(self) -> Optional[str]:
        if not self.repo.head.is_valid():
            return None
        return self.repo.head.commit.hexsha

    def _push_once(self) -> None:
        self.repo.git.push(self.config.remote_name, f"HEAD:refs/heads/{self.config.remote_branch}")

    def _has_staged_changes(self) -> bool:
        if not self.repo.head.is_valid():
            # Unborn branch: anything in the index is a change
            return len(self.repo.index.entries) > 0
        return self.repo.is_dirty(index=True, working_tree=False)

    def _remote_branch_exists(self) -> bool:
        heads = self.repo.git.ls_remote("--heads", self.config.remote_name, self.config.remote_branch)
        return bool(heads.strip())

    def _abort_rebase(self) -> None:
        try:
            self.repo.git.rebase("--abort")
        except GitCommandError as e:
            # Pull failed before a rebase was started
            logger.debug(f"No rebase to abort: {e.stderr.strip()}")

    def _open(self) -> git.Repo:
        """Open the working copy, cloning or initializing it when missing."""
        try:
            return git.Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            pass

        if self.path.exists() and any(self.path.iterdir()):
            raise RepositoryError(
                "Local path exists, is not empty and is not a git repository",
                path=str(self.path)
            )

        try:
            if self.has_remote:
                logger.info(f"Cloning {self.config.remote} into {self.path}")
                repo = git.Repo.clone_from(
                    self.config.remote,
                    self.path,
                    origin=self.config.remote_name,
                    env=self._git_env()
                )
            else:
                logger.info(f"No remote configured, initializing local repository at {self.path}")
                self.path.mkdir(parents=True, exist_ok=True)
                repo = git.Repo.init(self.path)
        except GitCommandError as e:
            raise RepositoryError("Failed to create working copy", path=str(self.path), cause=e) from e

        self._checkout_branch(repo)
        return repo

    def _checkout_branch(self, repo: git.Repo) -> None:
        branch = self.config.remote_branch
        if not repo.head.is_valid():
            repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
        elif repo.active_branch.name != branch:
            start = f"{self.config.remote_name}/{branch}"
            if self.has_remote and start in [ref.name for ref in repo.remote(self.config.remote_name).refs]:
                repo.git.checkout("-B", branch, start)
            else:
                repo.git.checkout("-B", branch)

    def _configure(self, configure_identity: bool) -> None:
        if configure_identity:
            with self.repo.config_writer() as writer:
                writer.set_value("user", "name", self.config.author_name)
                writer.set_value("user", "email", self.config.author_email)
        self.repo.git.update_environment(**self._git_env())

    def _git_env(self) -> dict:
        env = {'GIT_TERMINAL_PROMPT': '0'}
        if self.config.ssh_key_path:
            env['GIT_SSH_COMMAND'] = (
                f"ssh -i {self.config.ssh_key_path} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
            )
        return env
