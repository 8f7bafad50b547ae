import json

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import CRON_SECRET
from .lifecycle import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_GARAGE_OWNER

# strongest first; a user holding several roles acts with the first match
ROLE_PRECEDENCE = (ROLE_ADMIN, ROLE_GARAGE_OWNER, ROLE_CUSTOMER)

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(request: Request) -> dict:
    """
    Identity forwarded by the gateway, which has already verified the JWT.
    """
    sub = request.headers.get("X-User-Sub")
    raw_roles = request.headers.get("X-User-Roles")

    if not sub or not raw_roles:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity headers",
        )

    try:
        roles = json.loads(raw_roles)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Roles header",
        )

    payload = {"sub": sub, "roles": roles}
    request.state.user_sub = sub
    request.state.user_roles = roles
    return payload


def require_role(payload: dict, allowed_roles: list[str]):
    token_roles = payload.get("roles")

    if not isinstance(token_roles, list) or not token_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Roles missing in token",
        )

    allowed = {r.lower() for r in allowed_roles}
    roles = {str(r).lower() for r in token_roles}

    if roles.isdisjoint(allowed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )


def acting_role(payload: dict) -> str:
    roles = {str(r).lower() for r in payload.get("roles") or []}
    for role in ROLE_PRECEDENCE:
        if role in roles:
            return role
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Access forbidden for this role",
    )


def verify_cron_secret(creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)):
    if not CRON_SECRET:
        return
    if not creds or creds.scheme.lower() != "bearer" or creds.credentials != CRON_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )
