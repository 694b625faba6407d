"""
Authentication and authorization for the admin panel.

Staff log in with the configured admin credentials and receive a JWT; admin
endpoints validate that token server-side on every request.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_EMAIL, ADMIN_PASSWORD, ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

# Security scheme for JWT bearer tokens
security = HTTPBearer()
# Same scheme for public endpoints where a token is only sometimes needed
optional_security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Current authenticated staff member."""
    email: str
    role: str
    token: str


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def authenticate_admin(email: str, password: str) -> bool:
    """
    Check staff credentials against the configured admin account.

    Login is refused outright when no admin password is configured.
    """
    if not ADMIN_PASSWORD:
        logger.warning("Admin login attempted but ADMIN_PASSWORD is not set")
        return False
    email_ok = secrets.compare_digest(email.strip().lower().encode(), ADMIN_EMAIL.lower().encode())
    password_ok = secrets.compare_digest(password.encode(), ADMIN_PASSWORD.encode())
    return email_ok and password_ok


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if token is invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        role: str = payload.get("role")

        if email is None or role is None:
            raise credentials_exception

        return CurrentUser(email=email, role=role, token=token)
    except JWTError as e:
        logger.error(f"JWT validation error: {e}")
        raise credentials_exception


def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """
    FastAPI dependency to require admin role.

    Raises:
        HTTPException: 403 if user is not an admin
    """
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user


def admin_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> CurrentUser:
    """
    Validate an optional bearer token as an admin token.

    For public endpoints that need staff rights only for some requests.

    Raises:
        HTTPException: 401 if no token or an invalid token, 403 if not an admin
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return require_admin(get_current_user(credentials))
