from app.auth.token import TokenPayload, get_current_user, verify_token
from app.auth.rbac import require_role

__all__ = [
    "TokenPayload", "get_current_user", "verify_token",
    "require_role",
]
