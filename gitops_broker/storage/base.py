"""Abstract base class for instance record storage."""

from abc import ABC, abstractmethod
from typing import List

from gitops_broker.models.instance import InstanceRecord, OperationStatus


class InstanceStore(ABC):
    """Identifier-keyed access to instance records and their status."""

    @abstractmethod
    def write_instance(self, record: InstanceRecord) -> None:
        """Create or overwrite the record for ``record.id``."""
        pass

    @abstractmethod
    def read_instance(self, instance_id: str) -> InstanceRecord:
        """Read a record; raises NotFoundError when there is none."""
        pass

    @abstractmethod
    def instance_exists(self, instance_id: str) -> bool:
        """Check if a record exists, tombstoned or not."""
        pass

    @abstractmethod
    def list_instances(self) -> List[InstanceRecord]:
        """List every stored record, including tombstones."""
        pass

    @abstractmethod
    def read_status(self, instance_id: str) -> OperationStatus:
        """Read the operation status, or the bootstrap status when absent."""
        pass

    @abstractmethod
    def write_status(self, instance_id: str, status: OperationStatus) -> None:
        """Overwrite the operation status."""
        pass

    @abstractmethod
    def reset_status(self, instance_id: str, description: str) -> OperationStatus:
        """Start a new polling window with an in-progress status."""
        pass

    @abstractmethod
    def mark_deleted(self, instance_id: str) -> InstanceRecord:
        """Tombstone a record and restart its polling window."""
        pass
