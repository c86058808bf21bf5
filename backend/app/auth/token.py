"""
JWT Token Verification — OIDC-Compatible

Tokens are RS256-signed by the identity provider using a rotating key set.
We fetch the public JWKS once and cache it (TTL: 1 hour).  If a kid is
missing we force-refresh, which handles key rotation transparently.

    JWKS URI: <issuer>/.well-known/jwks.json

Required claims:
    sub          user id (UUID)
    company_id   tenant id (UUID); top-level or inside app_metadata
    role         employee | manager | admin; top-level or inside app_metadata

RBAC roles (enforced in app.auth.rbac):
    admin     - upload, reindex and archive documents
    manager   - chat; sees manager + employee documents
    employee  - chat; sees employee documents
"""

from __future__ import annotations

import logging
import time
from typing import Annotated, Any
from uuid import UUID

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from pydantic import BaseModel

from app.core.config import get_settings

logger = logging.getLogger(__name__)

VALID_ROLES = frozenset({"employee", "manager", "admin"})

# ---------------------------------------------------------------------------
# HTTP Bearer extractor
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=True)


# ---------------------------------------------------------------------------
# Verified token payload
# ---------------------------------------------------------------------------

class TokenPayload(BaseModel):
    """Parsed, validated JWT claims — passed to route handlers and services."""
    sub:        UUID         # user id
    email:      str = ""
    company_id: UUID
    role:       str          # employee | manager | admin
    exp:        int
    iss:        str

    @property
    def user_id(self) -> UUID:
        return self.sub


# ---------------------------------------------------------------------------
# JWKS cache (in-memory, TTL-based)
# ---------------------------------------------------------------------------

_JWKS_CACHE: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)
_JWKS_TTL   = 3600   # 1 hour


async def _fetch_jwks(issuer: str) -> dict:
    """Fetch JWKS from the provider's well-known endpoint with TTL caching."""
    now = time.monotonic()
    cached = _JWKS_CACHE.get(issuer)
    if cached and (now - cached[1]) < _JWKS_TTL:
        return cached[0]

    jwks_uri = f"{issuer.rstrip('/')}/.well-known/jwks.json"
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(jwks_uri)
        resp.raise_for_status()
        jwks = resp.json()

    _JWKS_CACHE[issuer] = (jwks, now)
    logger.debug("JWKS refreshed for issuer: %s", issuer)
    return jwks


async def _get_signing_key(token: str) -> Any:
    """
    Extract kid from token header, fetch matching public key from JWKS.
    Force-refreshes the cache if the kid is not found (handles key rotation).
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Invalid token header") from exc

    kid = header.get("kid")
    issuer = get_settings().auth_issuer

    for attempt in range(2):   # 0 = cached, 1 = force refresh
        if attempt == 1:
            _JWKS_CACHE.pop(issuer, None)

        jwks = await _fetch_jwks(issuer)
        for key_data in jwks.get("keys", []):
            if key_data.get("kid") == kid:
                return jwk.construct(key_data).public_key()

    raise HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        detail=f"Unable to find signing key for kid={kid}",
    )


# ---------------------------------------------------------------------------
# Claim extractors
# ---------------------------------------------------------------------------

def _claim(claims: dict, name: str) -> Any:
    return claims.get(name) or (claims.get("app_metadata") or {}).get(name)


def _extract_uuid(claims: dict, name: str) -> UUID:
    raw = _claim(claims, name)
    if not raw:
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail=f"Token missing {name} claim",
        )
    try:
        return UUID(str(raw))
    except ValueError:
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {name} in token: {raw}",
        )


def _extract_role(claims: dict) -> str:
    role = _claim(claims, "role")
    if role not in VALID_ROLES:
        logger.warning("Unknown role '%s' in token, defaulting to 'employee'", role)
        role = "employee"
    return role


# ---------------------------------------------------------------------------
# Main verification function
# ---------------------------------------------------------------------------

async def verify_token(token: str) -> TokenPayload:
    """
    Verify a JWT token:
      1. Fetch matching public key from JWKS (cached).
      2. Verify signature, expiry, issuer, audience.
      3. Extract and validate user id, company_id + role claims.
      4. Return a typed TokenPayload.
    """
    settings = get_settings()
    signing_key = await _get_signing_key(token)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=settings.auth_audience or None,
            issuer=settings.auth_issuer,
            options={"verify_exp": True, "verify_aud": bool(settings.auth_audience)},
        )
    except ExpiredSignatureError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {exc}")

    return TokenPayload(
        sub=_extract_uuid(claims, "sub"),
        email=claims.get("email", ""),
        company_id=_extract_uuid(claims, "company_id"),
        role=_extract_role(claims),
        exp=claims["exp"],
        iss=claims["iss"],
    )


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> TokenPayload:
    """
    FastAPI dependency that extracts and validates the Bearer token.

        @router.post("/assistant/chat")
        async def chat(user: TokenPayload = Depends(get_current_user)):
            ...
    """
    return await verify_token(credentials.credentials)
