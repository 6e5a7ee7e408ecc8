# loyalty/utils/auth_dep.py
"""
FastAPI dependencies for bearer-token auth.
- get_current_identity: verifies the JWT and resolves the caller (id/utorid/role)
- require_role: gate for routes that need a minimum role
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from loyalty.db import get_db
from loyalty.models.user import Role, User
from loyalty.utils.auth import Identity, InvalidToken, decode_access_token

log = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# one message for every failure: no hint whether the token was malformed, expired or forged
_UNAUTHORIZED = "Unauthorized"


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Identity:
    """
    Dependency for protected routes:
    - takes the token from `Authorization: Bearer ...`
    - verifies signature and expiry
    - reloads the user so a changed role applies right away
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized()

    try:
        claims = decode_access_token(credentials.credentials)
    except InvalidToken as e:
        log.info("rejected bearer token: %s", e)
        raise _unauthorized()

    user = db.get(User, claims.id)
    if user is None:
        raise _unauthorized()

    return Identity(id=user.id, utorid=user.utorid, role=user.role)


def require_role(minimum: Role):
    """
    Usage: `me: Identity = Depends(require_role(Role.MANAGER))`.
    Callers ranked below `minimum` get 403.
    """
    def role_dep(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not identity.has_role(minimum):
            raise HTTPException(status_code=403, detail="Forbidden")
        return identity
    return role_dep
