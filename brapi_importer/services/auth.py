"""Bearer JWT authentication of the acting user."""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from brapi_importer.config import settings

# Security event logger
security_logger = logging.getLogger("brapi_importer.security")

# Tokens are issued by the surrounding platform; no token endpoint is served here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 120
ANONYMOUS_USER_ID = "anonymous"


class ActingUser(BaseModel):
    """The user a request acts on behalf of, taken from the token claims."""

    id: str
    name: str | None = None


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token for the given claims."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "jti": str(uuid.uuid4())})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> ActingUser | None:
    """Get the acting user from the bearer token.

    When authentication is disabled every request acts as the anonymous user.
    """
    if not settings.auth_enabled:
        return ActingUser(id=ANONYMOUS_USER_ID)
    if not token:
        return None

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        security_logger.warning("Rejected bearer token: %s", str(e))
        return None

    subject: str | None = payload.get("sub")
    if subject is None:
        security_logger.warning("Rejected bearer token without subject: jti=%s", payload.get("jti"))
        return None
    return ActingUser(id=subject, name=payload.get("name"))


async def require_auth(
    user: Annotated[ActingUser | None, Depends(get_current_user)],
) -> ActingUser:
    """Require authentication - raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Type aliases for dependency injection
CurrentUser = Annotated[ActingUser | None, Depends(get_current_user)]
RequireAuth = Annotated[ActingUser, Depends(require_auth)]
