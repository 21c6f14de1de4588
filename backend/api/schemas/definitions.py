"""Workflow definition schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.constants import StepType


class StepDefinitionCreate(BaseModel):
    """One step of a definition being registered."""

    step_name: str = Field(min_length=1, description="Unique step name within the definition")
    step_order: int = Field(ge=0, description="Execution order; equal orders run in parallel")
    step_type: StepType = Field(description="Kind of work the step performs")
    description: Optional[str] = None
    is_required: bool = Field(default=True, description="A terminal failure fails the instance")
    is_parallel: bool = Field(default=False, description="Runs alongside peers of the same order")
    timeout_minutes: Optional[int] = Field(default=None, ge=0, description="Step deadline")
    retry_attempts: Optional[int] = Field(default=None, ge=0, description="Overrides the definition retry bound")
    condition_expression: Optional[str] = Field(default=None, description="Guard; false skips the step")
    approval_roles: List[str] = Field(default=[], description="Roles allowed to decide an APPROVAL step")
    service_endpoint: Optional[str] = Field(default=None, description="service-name/path for SERVICE_CALL steps")
    notification_template: Optional[str] = None
    configuration: Dict[str, Any] = Field(default={})
    input_mapping: Dict[str, Any] = Field(default={})
    output_mapping: Dict[str, Any] = Field(default={})


class DefinitionCreate(BaseModel):
    """Request to register a definition version."""

    name: str = Field(min_length=1, description="Workflow name shared by all versions")
    version: Optional[int] = Field(default=None, ge=1, description="Omit for the next version")
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True
    timeout_minutes: Optional[int] = Field(default=None, ge=0, description="Instance deadline")
    max_retry_attempts: Optional[int] = Field(
        default=None, ge=0, description="Default retry bound for steps; omit for DEFAULT_MAX_RETRY_ATTEMPTS"
    )
    auto_start: bool = False
    requires_approval: bool = False
    configuration: Dict[str, Any] = Field(default={})
    input_schema: Dict[str, Any] = Field(default={})
    output_schema: Dict[str, Any] = Field(default={})
    steps: List[StepDefinitionCreate] = Field(min_length=1)


class StepDefinitionResponse(BaseModel):
    """Step definition information."""

    id: str
    step_name: str
    step_order: int
    step_type: str
    description: Optional[str] = None
    is_required: bool
    is_parallel: bool
    timeout_minutes: Optional[int] = None
    retry_attempts: Optional[int] = None
    condition_expression: Optional[str] = None
    approval_roles: List[str] = []
    service_endpoint: Optional[str] = None
    notification_template: Optional[str] = None
    configuration: Dict[str, Any] = {}
    input_mapping: Dict[str, Any] = {}
    output_mapping: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class DefinitionResponse(BaseModel):
    """Workflow definition information."""

    id: str
    name: str
    version: int
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool
    is_system_workflow: bool
    timeout_minutes: Optional[int] = None
    max_retry_attempts: int
    auto_start: bool
    requires_approval: bool
    configuration: Dict[str, Any] = {}
    input_schema: Dict[str, Any] = {}
    output_schema: Dict[str, Any] = {}
    created_by: Optional[str] = None
    created_at: datetime
    steps: List[StepDefinitionResponse] = []

    class Config:
        from_attributes = True
