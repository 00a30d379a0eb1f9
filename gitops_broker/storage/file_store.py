"""File-backed instance store inside the repository working copy."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from gitops_broker.exceptions import DecodeError, NotFoundError, ValidationError
from gitops_broker.models.instance import (
    PREPARING_DELETION,
    InstanceRecord,
    OperationStatus,
)
from gitops_broker.storage.base import InstanceStore
from gitops_broker.storage.codec import YamlCodec, codec as default_codec

logger = logging.getLogger(__name__)

INSTANCES_DIR = "instances"
INSTANCE_FILE = "instance.yml"
STATUS_FILE = "status.yml"

_INSTANCE_ID_PATTERN = re.compile(r'[A-Za-z0-9][A-Za-z0-9._-]*')


def validate_instance_id(instance_id: str) -> str:
    """Reject ids that cannot be used as a single path segment."""
    if not isinstance(instance_id, str) or not _INSTANCE_ID_PATTERN.fullmatch(instance_id):
        raise ValidationError("Invalid service instance id", field='instance_id', value=instance_id)
    return instance_id


class FileInstanceStore(InstanceStore):
    """Stores one directory per instance under ``instances/``.

    Layout, relative to the repository root::

        instances/<id>/instance.yml
        instances/<id>/status.yml

    Writes are skipped when the encoded content already matches the file, so
    repeating a write leaves no diff. Files are replaced atomically so readers
    never see a partial document.
    """

    def __init__(self, root: Union[str, Path], codec: Optional[YamlCodec] = None):
        self.root = Path(root)
        self.codec = codec or default_codec

    @property
    def instances_dir(self) -> Path:
        return self.root / INSTANCES_DIR

    def instance_dir(self, instance_id: str) -> Path:
        return self.instances_dir / validate_instance_id(instance_id)

    def instance_path(self, instance_id: str) -> Path:
        return self.instance_dir(instance_id) / INSTANCE_FILE

    def status_path(self, instance_id: str) -> Path:
        return self.instance_dir(instance_id) / STATUS_FILE

    def write_instance(self, record: InstanceRecord) -> None:
        path = self.instance_path(record.id)
        if self._write_file(path, self.codec.encode_instance(record)):
            logger.info(f"Wrote instance record {record.id}")
        else:
            logger.debug(f"Instance record {record.id} unchanged")

    def read_instance(self, instance_id: str) -> InstanceRecord:
        path = self.instance_path(instance_id)
        if not path.is_file():
            raise NotFoundError(instance_id)

        record = self.codec.decode_instance(path.read_bytes(), source=self._relative(path))
        if record.id != instance_id:
            raise DecodeError(
                f"Record id '{record.id}' does not match its directory '{instance_id}'",
                path=self._relative(path)
            )
        return record

    def instance_exists(self, instance_id: str) -> bool:
        return self.instance_path(instance_id).is_file()

    def list_instances(self) -> List[InstanceRecord]:
        if not self.instances_dir.is_dir():
            return []

        records = []
        for entry in sorted(self.instances_dir.iterdir()):
            if not _INSTANCE_ID_PATTERN.fullmatch(entry.name) or not (entry / INSTANCE_FILE).is_file():
                continue
            records.append(self.read_instance(entry.name))
        return records

    def read_status(self, instance_id: str) -> OperationStatus:
        path = self.status_path(instance_id)
        if not path.is_file():
            # Pipeline has not reported yet
            return OperationStatus.bootstrap()
        return self.codec.decode_status(path.read_bytes(), source=self._relative(path))

    def write_status(self, instance_id: str, status: OperationStatus) -> None:
        path = self.status_path(instance_id)
        if self._write_file(path, self.codec.encode_status(status)):
            logger.info(f"Wrote status '{status.status.value}' for instance {instance_id}")

    def reset_status(self, instance_id: str, description: str) -> OperationStatus:
        status = OperationStatus.bootstrap(description)
        self.write_status(instance_id, status)
        return status

    def mark_deleted(self, instance_id: str) -> InstanceRecord:
        record = self.read_instance(instance_id)
        tombstone = record.model_copy(update={'deleted': True})
        self.write_instance(tombstone)
        self.reset_status(instance_id, PREPARING_DELETION)
        return tombstone

    def _write_file(self, path: Path, data: bytes) -> bool:
        if path.is_file() and path.read_bytes() == data:
            return False

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            os.fchmod(fd, 0o644)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)
