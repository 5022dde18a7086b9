"""
Authentication module for Farm Assistant.

Handles optional JWT validation and user_id extraction.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from farm_assistant.config import get_jwt_secret

JWT_ALGORITHM = "HS256"

# Anonymous requests are allowed, so a missing header is not an error
security = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Custom exception for authentication errors."""
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def decode_user_token(token: str) -> str:
    """
    Validate a token and return its subject.

    Raises:
        AuthError: If no secret is configured or the token has no 'sub' claim
        JWTError: If the token signature or claims are invalid
    """
    secret = get_jwt_secret()
    if not secret:
        raise AuthError("Authentication is not configured on this server")

    payload = jwt.decode(
        token,
        secret,
        algorithms=[JWT_ALGORITHM],
        options={"verify_aud": False}
    )

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Token missing sub claim")
    return str(user_id)


async def get_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """
    Extract user_id from the bearer token, if one was sent.

    Args:
        request: FastAPI request object
        credentials: JWT credentials from Authorization header

    Returns:
        user_id, or None for anonymous requests

    Raises:
        HTTPException: If a token was sent but is invalid
    """
    if credentials is None:
        return None

    try:
        user_id = decode_user_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except AuthError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = user_id
    return user_id
