"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import approvals, definitions, health, instances, user_approval
from api.schemas.common import ErrorResponse

api_v1_router = APIRouter()

# Engine errors documented on every business router
_ERRORS = {
    code: {"model": ErrorResponse}
    for code in (403, 404, 409, 422)
}

# Health (no auth required)
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflow definitions
api_v1_router.include_router(
    definitions.router,
    prefix="/definitions",
    tags=["Definitions"],
    responses=_ERRORS,
)

# Workflow instances
api_v1_router.include_router(
    instances.router,
    prefix="/instances",
    tags=["Instances"],
    responses=_ERRORS,
)

# Approval decisions
api_v1_router.include_router(
    approvals.router,
    prefix="/approvals",
    tags=["Approvals"],
    responses=_ERRORS,
)

# Signup approval requests
api_v1_router.include_router(
    user_approval.router,
    prefix="/user-approval",
    tags=["User Approval"],
    responses=_ERRORS,
)
