"""Workflow definition endpoints — register, list, versions, activation, delete."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.schemas.common import MessageResponse
from api.schemas.definitions import DefinitionCreate, DefinitionResponse
from app.dependencies import Caller, get_caller, get_definition_service
from services.definition_service import DefinitionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["definitions"])


@router.post("", response_model=DefinitionResponse, status_code=status.HTTP_201_CREATED)
async def register_definition(
    request: DefinitionCreate,
    caller: Caller = Depends(get_caller),
    svc: DefinitionService = Depends(get_definition_service),
) -> DefinitionResponse:
    """
    Register a new definition version.

    Omitting ``version`` registers the next version of ``name``.
    """
    data = request.model_dump(exclude_none=True)
    data["created_by"] = caller.user_id
    definition = await svc.register_definition(data)
    return DefinitionResponse.model_validate(definition)


@router.get("", response_model=List[DefinitionResponse])
async def list_definitions(
    category: Optional[str] = Query(default=None),
    svc: DefinitionService = Depends(get_definition_service),
) -> List[DefinitionResponse]:
    """List active definitions, optionally by category."""
    return [DefinitionResponse.model_validate(d) for d in await svc.list_active(category)]


@router.get("/{name}/latest", response_model=DefinitionResponse)
async def get_latest_definition(
    name: str,
    svc: DefinitionService = Depends(get_definition_service),
) -> DefinitionResponse:
    """Highest active version of ``name``."""
    return DefinitionResponse.model_validate(await svc.get_latest(name))


@router.get("/{name}/versions", response_model=List[DefinitionResponse])
async def list_definition_versions(
    name: str,
    svc: DefinitionService = Depends(get_definition_service),
) -> List[DefinitionResponse]:
    """Every version of ``name``, oldest first, active or not."""
    return [DefinitionResponse.model_validate(d) for d in await svc.list_versions(name)]


@router.get("/{name}/versions/{version}", response_model=DefinitionResponse)
async def get_definition_version(
    name: str,
    version: int,
    svc: DefinitionService = Depends(get_definition_service),
) -> DefinitionResponse:
    definition = await svc.get_by_name_and_version(name, version)
    return DefinitionResponse.model_validate(definition)


@router.post("/{definition_id}/activate", response_model=DefinitionResponse)
async def activate_definition(
    definition_id: str,
    svc: DefinitionService = Depends(get_definition_service),
) -> DefinitionResponse:
    return DefinitionResponse.model_validate(await svc.set_active(definition_id, True))


@router.post("/{definition_id}/deactivate", response_model=DefinitionResponse)
async def deactivate_definition(
    definition_id: str,
    svc: DefinitionService = Depends(get_definition_service),
) -> DefinitionResponse:
    """
    Deactivate a definition version.

    Running instances keep using it; new instances cannot start from it.
    """
    return DefinitionResponse.model_validate(await svc.set_active(definition_id, False))


@router.delete("/{definition_id}", response_model=MessageResponse)
async def delete_definition(
    definition_id: str,
    svc: DefinitionService = Depends(get_definition_service),
) -> MessageResponse:
    """Delete a definition version no instance references."""
    await svc.delete_definition(definition_id)
    return MessageResponse(message=f"Workflow definition {definition_id} deleted")
