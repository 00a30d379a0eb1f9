"""Instance record and operation status models.

These are the two record types stored in the repository::

    instances/<id>/instance.yml   -> InstanceRecord
    instances/<id>/status.yml     -> OperationStatus (optional)

Field aliases are the on-disk (camelCase) names. Unknown fields are ignored
so files written by newer pipeline versions still load.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

PREPARING_DEPLOYMENT = "preparing deployment"
PREPARING_UPDATE = "preparing service update"
PREPARING_DELETION = "preparing service deletion"


class OperationState(str, Enum):
    """State of the most recent asynchronous operation."""
    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OperationKind(str, Enum):
    """Mutating operations the broker records."""
    PROVISION = "provision"
    UPDATE = "update"
    DEPROVISION = "deprovision"

    @property
    def bootstrap_description(self) -> str:
        """Status description written when this operation starts."""
        return {
            OperationKind.PROVISION: PREPARING_DEPLOYMENT,
            OperationKind.UPDATE: PREPARING_UPDATE,
            OperationKind.DEPROVISION: PREPARING_DELETION,
        }[self]


class InstanceRecord(BaseModel):
    """Desired and last-known state of one service instance."""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: StrictStr = Field(..., description="Stable instance identifier")
    service_definition_id: StrictStr = Field(..., alias='serviceDefinitionId')
    plan_id: StrictStr = Field(..., alias='planId')
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Provisioning parameters")
    context: Optional[Dict[str, Any]] = Field(None, description="Platform context of the request")
    originating_identity: Optional[Dict[str, Any]] = Field(None, alias='originatingIdentity')
    deleted: StrictBool = Field(default=False, description="Tombstone flag")

    @field_validator('parameters', mode='before')
    @classmethod
    def default_parameters(cls, v):
        """An explicit null in the file means no parameters."""
        return {} if v is None else v


class OperationStatus(BaseModel):
    """Result of the most recent asynchronous operation against an instance."""
    model_config = ConfigDict(extra='ignore')

    status: OperationState
    description: StrictStr

    @property
    def terminal(self) -> bool:
        return self.status != OperationState.IN_PROGRESS

    @classmethod
    def bootstrap(cls, description: str = PREPARING_DEPLOYMENT) -> 'OperationStatus':
        """Status assumed when the pipeline has not reported yet."""
        return cls(status=OperationState.IN_PROGRESS, description=description)


class OperationHandle(BaseModel):
    """Token returned for an accepted mutating operation."""
    operation: str = Field(..., description="Opaque operation token")
    instance_id: str
    kind: OperationKind
    commit: Optional[str] = Field(None, description="HEAD after the operation was pushed")

    @classmethod
    def issue(cls, instance_id: str, kind: OperationKind, commit: Optional[str] = None) -> 'OperationHandle':
        return cls(
            operation=f"{kind.value}-{uuid.uuid4().hex}",
            instance_id=instance_id,
            kind=kind,
            commit=commit,
        )
