"""Authentication module resolving the calling user from a backend access token.

Sessions are issued by the hosted backend; this service only verifies the
bearer JWT it signed and turns it into an explicit ``Identity`` that every
adapter call receives as a parameter. Nothing here reads ambient session state.

This module provides:
1. Identity model for the current user
2. Access token verification
3. FastAPI dependencies for required and optional authentication
"""

import logging
from typing import Optional, Dict, Any
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, ExpiredSignatureError, JWTError
from pydantic import BaseModel

from config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

class Identity(BaseModel):
    """The authenticated user an operation runs on behalf of."""
    user_id: str
    email: Optional[str] = None

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class AuthRequiredError(AuthError):
    """Raised when an operation needs a signed-in user and none is present."""
    pass

class InvalidTokenError(AuthError):
    """Raised when an access token cannot be verified."""
    pass

class SessionExpiredError(AuthError):
    """Raised when an access token has expired."""
    pass

def decode_access_token(
    token: str,
    secret: str,
    algorithm: str = "HS256",
    audience: Optional[str] = None
) -> Identity:
    """Verify an access token and build the identity it carries.

    Args:
        token: Encoded JWT
        secret: Signing secret shared with the backend
        algorithm: Signing algorithm
        audience: Expected audience claim, if any

    Returns:
        Identity for the token subject

    Raises:
        SessionExpiredError: If the token has expired
        InvalidTokenError: If the signature, audience or subject is invalid
    """
    options = {"verify_aud": audience is not None}
    try:
        claims: Dict[str, Any] = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            audience=audience,
            options=options
        )
    except ExpiredSignatureError:
        raise SessionExpiredError("Session has expired")
    except JWTError as e:
        raise InvalidTokenError(f"Invalid access token: {e}")

    subject = claims.get("sub")
    if not subject:
        raise InvalidTokenError("Access token has no subject")

    return Identity(user_id=str(subject), email=claims.get("email"))

def require_identity(identity: Optional[Identity]) -> Identity:
    """Return the identity or raise AuthRequiredError when there is none."""
    if identity is None or not identity.user_id:
        raise AuthRequiredError("You need to sign in to do this")
    return identity

def login_required_exception(detail: str = "Authentication required") -> HTTPException:
    """401 response pointing the client at the login page."""
    login_url = get_settings().get('login_url', '/login')
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": detail, "login_url": login_url},
        headers={"WWW-Authenticate": "Bearer"}
    )

# FastAPI security scheme, missing tokens are handled below
auth_scheme = HTTPBearer(
    auto_error=False,
    description="Backend-issued JWT Bearer token"
)

def _identity_from_credentials(credentials: HTTPAuthorizationCredentials) -> Identity:
    settings = get_settings()
    return decode_access_token(
        credentials.credentials,
        settings['jwt_secret'],
        settings.get('jwt_algorithm', 'HS256'),
        settings.get('jwt_audience') or None
    )

async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Optional[Identity]:
    """FastAPI dependency for routes that work with or without a user.

    A missing token gives None; a bad token is still rejected.
    """
    if credentials is None:
        return None
    try:
        return _identity_from_credentials(credentials)
    except AuthError as e:
        raise login_required_exception(str(e))

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Identity:
    """FastAPI dependency for getting the authenticated user.

    Args:
        credentials: Bearer token credentials

    Returns:
        The authenticated identity

    Raises:
        HTTPException: 401 with a login_url hint if authentication fails
    """
    if credentials is None:
        raise login_required_exception()
    try:
        return _identity_from_credentials(credentials)
    except SessionExpiredError:
        raise login_required_exception("Session has expired")
    except AuthError as e:
        logger.info(f"Rejected access token: {e}")
        raise login_required_exception(str(e))

# Export public interface
__all__ = [
    'Identity',
    'AuthError',
    'AuthRequiredError',
    'InvalidTokenError',
    'SessionExpiredError',
    'decode_access_token',
    'require_identity',
    'login_required_exception',
    'auth_scheme',
    'get_current_user',
    'get_optional_user'
]
