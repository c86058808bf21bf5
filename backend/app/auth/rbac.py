"""
Role-Based Access Control (RBAC)

Role hierarchy (highest → lowest privilege):
    admin > manager > employee

Usage:
    @router.delete("/docs/{doc_id}")
    async def archive_doc(
        doc_id: UUID,
        user: TokenPayload = Depends(require_role("admin")),
    ): ...

The dependency raises 403 if the user's role is below the requirement and
passes the full TokenPayload through to the route.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status

from app.auth.token import TokenPayload, get_current_user

# ---------------------------------------------------------------------------
# Role ordering — higher index = more privilege
# ---------------------------------------------------------------------------

_ROLE_ORDER: dict[str, int] = {
    "employee": 0,
    "manager":  1,
    "admin":    2,
}


def _has_role(user_role: str, required_role: str) -> bool:
    """Return True if user_role meets or exceeds required_role."""
    user_level     = _ROLE_ORDER.get(user_role, -1)
    required_level = _ROLE_ORDER.get(required_role, 999)
    return user_level >= required_level


def require_role(minimum_role: str):
    """
    Returns a FastAPI dependency that verifies the JWT and checks the
    caller's role meets minimum_role ("employee" | "manager" | "admin").
    """
    async def _dependency(
        user: Annotated[TokenPayload, Depends(get_current_user)],
    ) -> TokenPayload:
        if not _has_role(user.role, minimum_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=(
                    f"Insufficient permissions. "
                    f"Required: '{minimum_role}', your role: '{user.role}'."
                ),
            )
        return user

    return _dependency
