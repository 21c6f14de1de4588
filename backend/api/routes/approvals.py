"""Approval endpoints — pending approvals and decisions."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.schemas.approvals import ApprovalDecision
from api.schemas.instances import ExecutionResponse
from app.dependencies import Caller, get_caller, get_engine
from workflow.engine import ExecutionEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["approvals"])


@router.get("/pending", response_model=List[ExecutionResponse])
async def list_pending_approvals(
    caller: Caller = Depends(get_caller),
    engine: ExecutionEngine = Depends(get_engine),
) -> List[ExecutionResponse]:
    """
    Steps waiting for a decision the caller may take.

    Matched by ``X-User-ID`` against the assigned approvers and by
    ``X-User-Roles`` against the step's approval roles.
    """
    executions = await engine.list_pending_approvals(user_id=caller.user_id, roles=caller.roles)
    return [ExecutionResponse.model_validate(e) for e in executions]


@router.post("/{execution_id}", response_model=ExecutionResponse)
async def resolve_approval(
    execution_id: str,
    decision: ApprovalDecision,
    caller: Caller = Depends(get_caller),
    engine: ExecutionEngine = Depends(get_engine),
) -> ExecutionResponse:
    """Approve or reject a step, then continue the workflow."""
    if not caller.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required to decide an approval",
        )
    execution = await engine.resolve_approval(
        execution_id,
        approver_id=caller.user_id,
        approved=decision.approved,
        notes=decision.notes,
        output_data=decision.output_data,
        approver_roles=caller.roles,
    )
    return ExecutionResponse.model_validate(execution)
