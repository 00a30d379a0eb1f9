"""Open Service Broker API request and response models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from gitops_broker.models.instance import OperationState


class ProvisionRequest(BaseModel):
    """Service instance provisioning request."""
    service_id: str = Field(..., description="ID of the service being provisioned")
    plan_id: str = Field(..., description="ID of the plan being provisioned")
    context: Optional[Dict[str, Any]] = None
    organization_guid: Optional[str] = None
    space_guid: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None

    @field_validator('parameters')
    @classmethod
    def validate_parameters(cls, v):
        return {} if v is None else v


class ProvisionResponse(BaseModel):
    """Service instance provisioning response."""
    dashboard_url: Optional[str] = None
    operation: Optional[str] = None


class UpdateRequest(BaseModel):
    """Service instance update request."""
    context: Optional[Dict[str, Any]] = None
    service_id: str = Field(..., description="ID of the service")
    plan_id: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    previous_values: Optional[Dict[str, Any]] = None


class UpdateResponse(BaseModel):
    """Service instance update response."""
    operation: Optional[str] = None


class DeprovisionResponse(BaseModel):
    """Service instance deprovisioning response."""
    operation: Optional[str] = None


class InstanceResponse(BaseModel):
    """Fetch service instance response."""
    service_id: str
    plan_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class LastOperationResponse(BaseModel):
    """Last operation status response."""
    state: str = Field(..., description="State of the operation")
    description: Optional[str] = None

    @field_validator('state')
    @classmethod
    def validate_state(cls, v):
        """Validate operation state."""
        valid_states = [state.value for state in OperationState]
        if v not in valid_states:
            raise ValueError(f"state must be one of {valid_states}")
        return v


class ErrorResponse(BaseModel):
    """Error response."""
    error: str = Field(..., description="Error code")
    description: str = Field(..., description="Error description")
    instance_usable: Optional[bool] = None
    update_repeatable: Optional[bool] = None
