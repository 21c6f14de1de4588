"""Identity service boundary.

The engine asks the identity service two things: who currently holds a
role (candidate approvers), and to record the outcome of an approval
workflow on the entity it was about (user or clinic).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from core.exceptions import DispatchError

logger = logging.getLogger(__name__)


class IdentityPort(ABC):
    """Abstract identity/authorization service."""

    @abstractmethod
    async def resolve_role_holders(self, roles: list[str]) -> list[str]:
        """User ids holding any of ``roles``."""
        ...

    @abstractmethod
    async def update_entity_approval_status(
        self,
        entity_type: str,
        entity_id: str,
        status: str,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record an approval decision on a user or clinic."""
        ...


def _unwrap(body: Any) -> Any:
    """Identity responses are wrapped as ``{"success", "data", "message"}``."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class HttpIdentityClient(IdentityPort):
    """Identity boundary over HTTP.

    Endpoints (relative to ``IDENTITY_SERVICE_URL``):
        GET  /auth/users?role=<role>          -> list of users or ids
        PUT  /auth/user/{id}/approval         -> user approval status
        PUT  /auth/clinic/{id}/approval       -> clinic approval status
    """

    def __init__(self, base_url: str, timeout_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def resolve_role_holders(self, roles: list[str]) -> list[str]:
        client = await self._get_client()
        holders: list[str] = []
        for role in roles:
            try:
                response = await client.get("/auth/users", params={"role": role})
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise DispatchError(f"Identity service lookup for role {role} failed: {e}")
            for user in _unwrap(response.json()) or []:
                user_id = str(user.get("id")) if isinstance(user, dict) else str(user)
                if user_id not in holders:
                    holders.append(user_id)
        logger.debug(f"Resolved {len(holders)} holders for roles {roles}")
        return holders

    async def update_entity_approval_status(
        self,
        entity_type: str,
        entity_id: str,
        status: str,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        kind = "clinic" if entity_type.upper() == "CLINIC" else "user"
        payload = {
            "approvalStatus": status,
            "approvedBy": approver_id,
            "approvalNotes": notes,
            "approvalDate": datetime.now(timezone.utc).isoformat(),
            "enabled": status == "APPROVED",
        }
        client = await self._get_client()
        try:
            response = await client.put(f"/auth/{kind}/{entity_id}/approval", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DispatchError(f"Identity service update of {kind} {entity_id} failed: {e}")

        logger.info(f"Updated {kind} {entity_id} approval status to {status}")
        return {
            f"{kind}StatusUpdated": True,
            f"{kind}Id": entity_id,
            "status": status,
        }
