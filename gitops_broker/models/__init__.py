"""Data models for instance records and the OSB boundary."""

from gitops_broker.models.instance import (
    InstanceRecord,
    OperationState,
    OperationStatus,
    OperationKind,
    OperationHandle,
)

__all__ = [
    'InstanceRecord',
    'OperationState',
    'OperationStatus',
    'OperationKind',
    'OperationHandle',
]
