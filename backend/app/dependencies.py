"""FastAPI dependency injection functions."""

import logging
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.runtime import Runtime
from services.approval_request_service import ApprovalRequestService
from services.definition_service import DefinitionService
from workflow.engine import ExecutionEngine

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> Runtime:
    """Runtime attached to the application by ``create_app``."""
    return request.app.state.runtime


async def get_db(runtime: Runtime = Depends(get_runtime)) -> AsyncIterator[AsyncSession]:
    """
    Provide a database session for API endpoints.

    The session runs inside one transaction that commits when the
    endpoint returns and rolls back when it raises.
    """
    async with runtime.uow.transaction() as session:
        yield session


async def get_definition_service(db: AsyncSession = Depends(get_db)) -> DefinitionService:
    return DefinitionService(db)


def get_engine(runtime: Runtime = Depends(get_runtime)) -> ExecutionEngine:
    return runtime.engine


def get_approval_requests(runtime: Runtime = Depends(get_runtime)) -> ApprovalRequestService:
    return runtime.approval_requests


class Caller:
    """Identity of the caller as forwarded by the gateway."""

    def __init__(self, user_id: Optional[str], roles: list[str]):
        self.user_id = user_id
        self.roles = roles


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_roles: Optional[str] = Header(default=None),
) -> Caller:
    """
    Read ``X-User-ID`` and the comma separated ``X-User-Roles`` headers.

    Authentication happens upstream; the engine trusts these headers.
    """
    roles = [r.strip().upper() for r in (x_user_roles or "").split(",") if r.strip()]
    return Caller(user_id=x_user_id, roles=roles)
