"""
Security utilities for authentication and authorization
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import time
import uuid

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.permissions import has_permission
from app.models.user import User

logger = logging.getLogger(__name__)

# Bearer scheme; tokens are issued by the account service
bearer_scheme = HTTPBearer(auto_error=False)


class SecurityManager:
    """
    Security manager for authentication and authorization
    """

    @staticmethod
    def create_access_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a JWT access token
        """
        to_encode = data.copy()
        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + timedelta(
                minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
            )

        # Add high precision timestamp to ensure token uniqueness
        to_encode.update({
            "exp": expire,
            "type": "access",
            "iat": time.time(),
        })

        return jwt.encode(
            to_encode,
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """
        Decode and verify a JWT access token
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError as e:
            logger.warning(f"JWT decode error: {e}")
            raise AuthenticationError("Could not validate credentials")

        if payload.get("type") != "access":
            raise AuthenticationError("Invalid token type. Expected access")
        return payload


# Create global security manager
security_manager = SecurityManager()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session)
) -> User:
    """
    Get current user from JWT token
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = security_manager.decode_token(credentials.credentials)
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthorizationError("User account is disabled")
    return user


def require_permission(permission: str):
    """
    Dependency factory gating an endpoint on a role permission
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user.role, permission):
            logger.warning(
                f"Permission '{permission}' denied",
                extra={"user_id": str(current_user.id)}
            )
            raise AuthorizationError(
                "You do not have permission to perform this action",
                details={"permission": permission}
            )
        return current_user

    return checker


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Standalone function to create access token
    """
    return security_manager.create_access_token(data, expires_delta)
