"""Workflow instance endpoints — start, list, get, resume, suspend, cancel."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.schemas.instances import (
    CancelRequest,
    InstanceDetailResponse,
    InstanceResponse,
    InstanceStart,
)
from app.dependencies import Caller, get_caller, get_engine
from core.constants import WorkflowStatus
from workflow.engine import ExecutionEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["instances"])


@router.post("", response_model=InstanceDetailResponse, status_code=status.HTTP_201_CREATED)
async def start_instance(
    request: InstanceStart,
    caller: Caller = Depends(get_caller),
    engine: ExecutionEngine = Depends(get_engine),
) -> InstanceDetailResponse:
    """
    Create an instance of a workflow and, when auto-started, drive it
    until it completes or waits on something (an approval, a retry).
    """
    instance = await engine.start(
        request.workflow_name,
        version=request.version,
        business_key=request.business_key,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        input_data=request.input_data,
        context_data=request.context_data,
        auto_start=request.auto_start,
        instance_name=request.instance_name,
        priority=request.priority,
        started_by=caller.user_id,
    )
    return InstanceDetailResponse.model_validate(instance)


@router.get("", response_model=List[InstanceResponse])
async def list_instances(
    status_filter: Optional[WorkflowStatus] = Query(default=None, alias="status"),
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[str] = Query(default=None),
    engine: ExecutionEngine = Depends(get_engine),
) -> List[InstanceResponse]:
    """List instances, newest first."""
    instances = await engine.list_instances(
        status=status_filter.value if status_filter else None,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    return [InstanceResponse.model_validate(i) for i in instances]


@router.get("/{instance_id}", response_model=InstanceDetailResponse)
async def get_instance(
    instance_id: str,
    engine: ExecutionEngine = Depends(get_engine),
) -> InstanceDetailResponse:
    """Instance with its step executions in step order."""
    return InstanceDetailResponse.model_validate(await engine.get_instance(instance_id))


@router.post("/{instance_id}/start", response_model=InstanceDetailResponse)
async def resume_instance(
    instance_id: str,
    engine: ExecutionEngine = Depends(get_engine),
) -> InstanceDetailResponse:
    """Start a CREATED instance or resume a WAITING one."""
    return InstanceDetailResponse.model_validate(await engine.start_instance(instance_id))


@router.post("/{instance_id}/suspend", response_model=InstanceDetailResponse)
async def suspend_instance(
    instance_id: str,
    engine: ExecutionEngine = Depends(get_engine),
) -> InstanceDetailResponse:
    return InstanceDetailResponse.model_validate(await engine.suspend(instance_id))


@router.post("/{instance_id}/cancel", response_model=InstanceDetailResponse)
async def cancel_instance(
    instance_id: str,
    request: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_caller),
    engine: ExecutionEngine = Depends(get_engine),
) -> InstanceDetailResponse:
    """Cancel an active instance. Open steps are skipped."""
    reason = request.reason if request else None
    instance = await engine.cancel(instance_id, reason)
    logger.info(f"Instance {instance_id} cancelled by {caller.user_id or 'anonymous'}")
    return InstanceDetailResponse.model_validate(instance)
