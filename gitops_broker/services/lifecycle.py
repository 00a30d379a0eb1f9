"""Lifecycle coordination for service instances.

Every mutating operation runs as one unit against the working copy::

    pull -> mutate records -> commit -> push -> OperationHandle

Mutations are serialized on a single worker thread while holding the
repository lock, so the event loop that serves requests never blocks on git
and no two mutations touch the working copy at once. Status polls read the
local files only and never wait for the lock.

If the push fails after its retry, the local write and commit are kept.
Repeating the same operation finds the tree already in the desired state,
skips the empty commit and pushes again.
A failure before the commit is recorded discards the uncommitted changes
under the instance directory, so they never end up in another instance's
commit.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Optional

from gitops_broker.config import GitConfig, config
from gitops_broker.exceptions import ConflictError, GitOpsBrokerError, ValidationError
from gitops_broker.logging_config import audit_logger
from gitops_broker.models.instance import (
    InstanceRecord,
    OperationHandle,
    OperationKind,
    OperationStatus,
)
from gitops_broker.storage.base import InstanceStore
from gitops_broker.storage.file_store import FileInstanceStore, validate_instance_id
from gitops_broker.storage.git_repository import SyncedRepository

logger = logging.getLogger(__name__)

_COMMIT_VERBS = {
    OperationKind.PROVISION: "Created",
    OperationKind.UPDATE: "Updated",
    OperationKind.DEPROVISION: "Deleted",
}


def commit_message(kind: OperationKind, instance_id: str) -> str:
    """Audit commit message; downstream checks rely on it naming the instance."""
    return f"OSB API: {_COMMIT_VERBS[kind]} service instance {instance_id} ({kind.value})"


class LifecycleCoordinator:
    """Entry point for create, update, delete and status polls."""

    def __init__(self, repository: SyncedRepository, store: Optional[InstanceStore] = None):
        self.repository = repository
        self.store = store or FileInstanceStore(repository.path)
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="git-sync")

    async def create_instance(self, record: InstanceRecord) -> OperationHandle:
        """Record a new instance and start its deployment polling window."""
        validate_instance_id(record.id)
        if record.deleted:
            raise ValidationError("Cannot provision a deleted instance", field='deleted', value=True)

        def mutate() -> Dict[str, Any]:
            if self.store.instance_exists(record.id):
                self._check_reprovision(self.store.read_instance(record.id), record)
            self.store.write_instance(record)
            self.store.reset_status(record.id, OperationKind.PROVISION.bootstrap_description)
            return {'service_id': record.service_definition_id, 'plan_id': record.plan_id}

        return await self._execute(OperationKind.PROVISION, record.id, mutate)

    async def update_instance(
        self,
        instance_id: str,
        plan_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> OperationHandle:
        """Change plan, parameters or context of an existing instance."""
        validate_instance_id(instance_id)

        def mutate() -> Dict[str, Any]:
            existing = self.store.read_instance(instance_id)
            if existing.deleted:
                raise ConflictError(f"Service instance '{instance_id}' has been deleted", instance_id)

            changes: Dict[str, Any] = {}
            if plan_id is not None:
                changes['plan_id'] = plan_id
            if parameters is not None:
                changes['parameters'] = parameters
            if context is not None:
                changes['context'] = context

            self.store.write_instance(existing.model_copy(update=changes))
            self.store.reset_status(instance_id, OperationKind.UPDATE.bootstrap_description)
            return {key: value for key, value in changes.items() if key != 'context'}

        return await self._execute(OperationKind.UPDATE, instance_id, mutate)

    async def delete_instance(self, instance_id: str) -> OperationHandle:
        """Tombstone an instance and start its deletion polling window."""
        validate_instance_id(instance_id)

        def mutate() -> Dict[str, Any]:
            self.store.mark_deleted(instance_id)
            return {}

        return await self._execute(OperationKind.DEPROVISION, instance_id, mutate)

    def get_last_operation(self, instance_id: str) -> OperationStatus:
        """Status of the latest operation, read from the local working copy.

        A missing status file yields the bootstrap in-progress status whether
        or not the instance record exists.
        """
        return self.store.read_status(instance_id)

    def get_instance(self, instance_id: str) -> InstanceRecord:
        """Read a record from the local working copy."""
        return self.store.read_instance(instance_id)

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    async def _execute(
        self,
        kind: OperationKind,
        instance_id: str,
        mutate: Callable[[], Dict[str, Any]]
    ) -> OperationHandle:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            partial(self._apply, kind, instance_id, mutate)
        )

    def _apply(
        self,
        kind: OperationKind,
        instance_id: str,
        mutate: Callable[[], Dict[str, Any]]
    ) -> OperationHandle:
        logger.info(f"Starting {kind.value} for instance {instance_id}")

        with self.repository.locked():
            try:
                self.repository.pull()
                try:
                    details = mutate()
                    committed = self.repository.commit(commit_message(kind, instance_id))
                except Exception:
                    # Nothing uncommitted may leak into the next operation's commit
                    self.repository.restore(self.store.instance_dir(instance_id))
                    raise
                self.repository.push()
            except GitOpsBrokerError as e:
                audit_logger.log_failure(instance_id, kind.value, e)
                raise
            commit = self.repository.head_commit()

        if not committed:
            logger.info(f"No changes for {kind.value} of instance {instance_id}, pushed existing history")

        audit_logger.log_operation(instance_id, kind.value, commit, details)
        return OperationHandle.issue(instance_id, kind, commit)

    def _check_reprovision(self, existing: InstanceRecord, requested: InstanceRecord) -> None:
        if existing.deleted:
            raise ConflictError(f"Service instance '{requested.id}' has been deleted", requested.id)

        if (existing.service_definition_id, existing.plan_id, existing.parameters) != (
            requested.service_definition_id, requested.plan_id, requested.parameters
        ):
            raise ConflictError(
                f"Service instance '{requested.id}' already exists with different attributes",
                requested.id
            )


# Global coordinator instance (initialized on first use)
_coordinator: Optional[LifecycleCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator(git_config: Optional[GitConfig] = None) -> LifecycleCoordinator:
    """Get or create the process-wide coordinator."""
    global _coordinator
    if _coordinator is None:
        with _coordinator_lock:
            # One repository lock per working copy
            if _coordinator is None:
                repository = SyncedRepository(git_config or config.git)
                _coordinator = LifecycleCoordinator(repository)
                logger.info(f"Lifecycle coordinator initialized for {repository.path}")
    return _coordinator


def close_coordinator() -> None:
    global _coordinator
    with _coordinator_lock:
        if _coordinator is not None:
            _coordinator.close()
            _coordinator = None
