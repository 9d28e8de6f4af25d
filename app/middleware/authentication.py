from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from app.config import settings

# Tokens are issued by the account service; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

ORGANIZER_ROLES = ["admin", "organizer"]


class CurrentUser(BaseModel):
    id: int
    role: Optional[str] = None


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """
    Get the current authenticated user from the provided JWT token.

    Args:
        token: The JWT token

    Returns:
        The user id and role carried by the token

    Raises:
        HTTPException: If token is invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        # Decode the JWT token
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception

        # Check token expiration
        token_exp = payload.get("exp")
        if token_exp is None:
            raise credentials_exception

        if datetime.fromtimestamp(token_exp, tz=timezone.utc) < datetime.now(timezone.utc):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return CurrentUser(id=int(user_id), role=payload.get("role"))

    except (JWTError, ValueError):
        raise credentials_exception

class RoleChecker:
    """
    Dependency for checking if a user has the required role(s).
    """
    def __init__(self, allowed_roles: List[str]):
        self.allowed_roles = allowed_roles

    async def __call__(self, user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This action requires organizer privileges"
            )
        return user
