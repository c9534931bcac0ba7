from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlmodel import Session

from . import models
from .db import get_session
from .errors import NotFound
from .settings import settings
from .tenants import get_tenant

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_staff_token(tenant_id: int, subject: str, expires_delta: timedelta | None = None) -> str:
    return create_access_token({"sub": subject, "tenant_id": tenant_id}, expires_delta)


async def get_token(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> str:
    """
    Get token from cookie (primary) or Authorization header (fallback).
    """
    cookie_token = request.cookies.get("access_token")
    if cookie_token:
        return cookie_token
    if token:
        return token
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


def get_current_tenant(
    token: Annotated[str, Depends(get_token)],
    session: Annotated[Session, Depends(get_session)],
) -> models.Tenant:
    """Tenant the staff token was issued for; every staff query is scoped to it."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise credentials_exception
    tenant_id = payload.get("tenant_id")
    if payload.get("sub") is None or tenant_id is None:
        raise credentials_exception

    try:
        return get_tenant(session, int(tenant_id))
    except NotFound:
        # Deactivated restaurants lose staff access
        raise credentials_exception
