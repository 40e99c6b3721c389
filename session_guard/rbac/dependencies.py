"""
RBAC dependencies — gatekeeping for the operator surface.

`require_role` is a *dependency factory*: call it with one or more role
names and it returns a FastAPI dependency that will:

1. Decode the JWT (via `get_current_user_token`).
2. Read the ``role_names`` claim issued by the identity service.
3. Return the caller's user id if any required role is present.
4. Return 403 otherwise — with NO details about which roles exist.

Usage in a route:
    @router.get("/blocks")
    async def list_blocks(operator_id: uuid.UUID = Depends(require_operator)): ...
"""

import logging
import uuid
from typing import Any

from fastapi import Depends, HTTPException, status

from session_guard.core.config import settings
from session_guard.core.security import get_current_user_token

logger = logging.getLogger("rbac")


def collect_roles(token_payload: dict[str, Any]) -> set[str]:
    roles = token_payload.get("role_names") or []
    if isinstance(roles, str):
        roles = [roles]
    return {str(r) for r in roles}


class require_role:
    """
    Dependency factory.

    Can be used as:
        Depends(require_role("ADMIN"))
        Depends(require_role("ADMIN", "SECURITY"))
    """

    def __init__(self, *role_names: str):
        self.accepted_roles = set(role_names)

    async def __call__(
        self,
        token_payload: dict[str, Any] = Depends(get_current_user_token),
    ) -> uuid.UUID:
        user_id = uuid.UUID(token_payload["sub"])
        granted = collect_roles(token_payload)

        if not self.accepted_roles & granted:
            logger.warning(
                "Role check failed for user %s — accepted: %s, granted: %s",
                user_id,
                self.accepted_roles,
                granted,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return user_id


require_operator = require_role(settings.OPERATOR_ROLE)
