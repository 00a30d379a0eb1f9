"""Storage layer: YAML codec, git working copy and instance store."""

from gitops_broker.storage.base import InstanceStore
from gitops_broker.storage.codec import YamlCodec
from gitops_broker.storage.file_store import FileInstanceStore
from gitops_broker.storage.git_repository import SyncedRepository

__all__ = [
    'InstanceStore',
    'YamlCodec',
    'FileInstanceStore',
    'SyncedRepository',
]
