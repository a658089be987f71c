"""JWT authentication and tenant role checks for FastAPI."""

from dataclasses import dataclass
from functools import lru_cache

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from tenant_licensing.core.config import get_settings
from tenant_licensing.core.exceptions import ForbiddenError

_bearer_scheme = HTTPBearer(auto_error=False)

TENANT_ADMIN = "tenant_admin"
MANAGER = "manager"
SUPER_ADMIN = "super_admin"

LICENSE_MANAGER_ROLES = frozenset({TENANT_ADMIN, MANAGER, SUPER_ADMIN})
REFUND_ROLES = frozenset({TENANT_ADMIN, SUPER_ADMIN})


@lru_cache
def get_jwks_client() -> PyJWKClient:
    """Create a cached JWKS client pointing at the configured JWKS endpoint."""
    settings = get_settings()
    if not settings.auth_jwks_url:
        raise RuntimeError("auth_jwks_url is not configured")
    return PyJWKClient(settings.auth_jwks_url, cache_keys=True, lifespan=300)


@dataclass(frozen=True)
class TenantUser:
    """Authenticated user extracted from a JWT."""

    user_id: str
    tenant_id: str | None
    role: str | None
    email: str | None
    claims: dict

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN


def user_from_claims(payload: dict) -> TenantUser:
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")
    return TenantUser(
        user_id=sub,
        tenant_id=payload.get("tenant_id"),
        role=payload.get("role"),
        email=payload.get("email"),
        claims=payload,
    )


def decode_jwt(token: str) -> TenantUser:
    """Verify and decode a bearer JWT.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    try:
        client = get_jwks_client()
        signing_key = client.get_signing_key_from_jwt(token)

        payload = pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={
                "verify_exp": True,
                "verify_aud": False,
                "require": ["sub", "exp", "iat"],
            },
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")
    except pyjwt.PyJWKClientError as exc:
        raise HTTPException(status_code=401, detail=f"Unable to verify token: {exc}")

    return user_from_claims(payload)


def _validate_audience_claim(aud_claim: object, allowed_audiences: list[str]) -> None:
    """Validate aud claim against configured allowed audiences."""
    if aud_claim is None:
        raise HTTPException(status_code=401, detail="Missing aud claim")

    if isinstance(aud_claim, str):
        audiences = {aud_claim}
    elif isinstance(aud_claim, list) and all(isinstance(v, str) for v in aud_claim):
        audiences = set(aud_claim)
    else:
        raise HTTPException(status_code=401, detail="Invalid aud claim format")

    if not audiences.intersection(allowed_audiences):
        raise HTTPException(status_code=401, detail="Unauthorized audience (aud mismatch)")


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> TenantUser:
    """FastAPI dependency that extracts and validates the bearer JWT.

    Usage::

        @router.get("/protected")
        async def protected(user: TenantUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    user = decode_jwt(credentials.credentials)

    settings = get_settings()
    if settings.auth_issuer and user.claims.get("iss") != settings.auth_issuer:
        raise HTTPException(status_code=401, detail="Invalid issuer (iss mismatch)")

    # Optional audience validation (only enforced when configured)
    if settings.auth_audiences:
        _validate_audience_claim(user.claims.get("aud"), settings.auth_audiences)

    # Set user_id on request state for downstream use (error handlers, audit logging)
    request.state.user_id = user.user_id

    return user


async def require_tenant_manager(user: TenantUser = Depends(require_auth)) -> TenantUser:
    """Tenant admin or manager acting inside their own tenant."""
    if not user.tenant_id:
        raise ForbiddenError("Tenant access required")
    if user.role not in LICENSE_MANAGER_ROLES:
        raise ForbiddenError("Admin or manager access required")
    return user


async def require_super_admin(user: TenantUser = Depends(require_auth)) -> TenantUser:
    if not user.is_super_admin:
        raise ForbiddenError("Super admin access required")
    return user
