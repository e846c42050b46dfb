from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from . import schemas
from .dependencies import get_store
from .storage_db import DatabaseStore

ADMIN_ROLE = "admin"

# Tokens are issued elsewhere; the URL only feeds the OpenAPI security scheme.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def create_access_token(
    subject: str,
    roles: Iterable[str],
    secret_key: str,
    algorithm: str,
    expires_delta: timedelta,
) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    claims = {"sub": subject, "roles": list(roles), "exp": expire}
    return jwt.encode(claims, secret_key, algorithm=algorithm)


def decode_principal(token: str, secret_key: str, algorithm: str) -> schemas.Principal:
    payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    subject = payload.get("sub")
    if not subject:
        raise JWTError("missing_subject")
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return schemas.Principal(user_id=str(subject), roles=[str(role) for role in roles])


def get_current_principal(
    token: str = Depends(oauth2_scheme),
    store: DatabaseStore = Depends(get_store),
) -> schemas.Principal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="could_not_validate_credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return decode_principal(token, store.jwt_secret_key, store.jwt_algorithm)
    except JWTError as exc:
        raise credentials_exception from exc


def require_roles(*roles: str):
    def dependency(
        principal: schemas.Principal = Depends(get_current_principal),
    ) -> schemas.Principal:
        if not any(role in principal.roles for role in roles):
            raise HTTPException(status_code=403, detail="insufficient_permissions")
        return principal

    return dependency


require_admin = require_roles(ADMIN_ROLE)
