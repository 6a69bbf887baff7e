from __future__ import annotations

from typing import Any, Optional, Protocol, Set
from uuid import UUID

import httpx

from uploader.core.config import get_settings
from uploader.exception import PermissionServiceError
from uploader.logger import get_logger
from uploader.middleware.auth import AuthContext, extract_token

logger = get_logger(__name__)

ORGS_PATH = "/rest/orgs"


class PermissionVerifier(Protocol):
    async def is_org_accessible(self, org_id: UUID, principal: AuthContext) -> bool:
        ...


class UserManagementPermissionVerifier:
    """
    Grants access to the organizations the user-management service lists for the caller.

    The caller's own token is forwarded, so the listing reflects their
    memberships. A 401/403 from user management means "no access"; any other
    failure is a server error because access cannot be decided.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.user_management_url).rstrip("/")
        self.timeout = timeout or settings.callback_timeout_seconds
        self._transport = transport

    async def is_org_accessible(self, org_id: UUID, principal: AuthContext) -> bool:
        url = f"{self.base_url}{ORGS_PATH}"
        headers = {"Authorization": f"bearer {extract_token(principal)}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.exception("Organization lookup failed.", extra={"url": url})
            raise PermissionServiceError(detail={"url": url}) from exc

        if response.status_code in (401, 403):
            logger.info("User management refused organization lookup.", extra={"status": response.status_code})
            return False
        if response.is_error:
            raise PermissionServiceError(detail={"url": url, "status": response.status_code})

        try:
            payload = response.json()
        except ValueError as exc:
            logger.exception("Organization listing is not JSON.", extra={"url": url})
            raise PermissionServiceError(detail={"url": url, "reason": "invalid listing"}) from exc

        accessible = str(org_id) in _org_guids(payload)
        logger.info(
            "Organization access checked.",
            extra={"subject": principal.subject, "accessible": accessible},
        )
        return accessible


def _org_guids(payload: Any) -> Set[str]:
    """Collect GUIDs from either flat ``{"guid": ...}`` or CF-style ``organization.metadata`` entries."""
    entries: Any = payload.get("resources") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        return set()
    guids: Set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        organization = entry.get("organization")
        metadata = organization.get("metadata") if isinstance(organization, dict) else None
        guid = entry.get("guid") or (metadata.get("guid") if isinstance(metadata, dict) else None)
        if guid:
            guids.add(str(guid).lower())
    return guids
