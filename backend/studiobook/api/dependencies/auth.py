# backend/studiobook/api/dependencies/auth.py
"""
Caller identification.

The bearer token only says who the caller is. Whether the caller may act as
an administrator is decided by the services against the stored user record.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from ...auth import decode_access_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": detail, "code": "UNAUTHENTICATED"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from_token(token: str) -> str:
    try:
        payload = decode_access_token(token)
    except PyJWTError as e:
        logger.info(f"Rejected bearer token: {type(e).__name__}")
        raise _unauthorized("Could not validate credentials") from e
    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Token has no subject")
    return str(user_id)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """User id from the Authorization header; 401 when missing or invalid."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    return _user_id_from_token(credentials.credentials)


def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Like get_current_user_id, but anonymous callers get None."""
    if credentials is None or not credentials.credentials:
        return None
    return _user_id_from_token(credentials.credentials)
