"""Workflow instance and step execution schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class InstanceStart(BaseModel):
    """Request to start a workflow instance."""

    workflow_name: str = Field(min_length=1)
    version: Optional[int] = Field(default=None, ge=1, description="Omit for the latest active version")
    instance_name: Optional[str] = None
    business_key: Optional[str] = Field(default=None, description="At most one active instance per key")
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    priority: int = Field(default=5, ge=1, le=10)
    input_data: Dict[str, Any] = Field(default={})
    context_data: Dict[str, Any] = Field(default={})
    auto_start: Optional[bool] = Field(default=None, description="Defaults to the definition's auto_start")


class CancelRequest(BaseModel):
    """Request to cancel an instance."""

    reason: Optional[str] = None


class ExecutionResponse(BaseModel):
    """One step execution."""

    id: str
    workflow_instance_id: str
    step_definition_id: str
    step_name: str
    step_order: int
    step_type: str
    status: str
    input_data: Dict[str, Any] = {}
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    is_retryable: bool
    retry_count: int
    assigned_to: List[str] = []
    approved_by: Optional[str] = None
    approval_notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InstanceResponse(BaseModel):
    """Workflow instance summary."""

    id: str
    workflow_definition_id: str
    instance_name: Optional[str] = None
    status: str
    business_key: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    priority: int
    input_data: Dict[str, Any] = {}
    output_data: Optional[Dict[str, Any]] = None
    context_data: Dict[str, Any] = {}
    current_step_order: Optional[int] = None
    current_step_name: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    started_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class InstanceDetailResponse(InstanceResponse):
    """Workflow instance with its step executions."""

    executions: List[ExecutionResponse] = []
