# store_backend/features/auth/dependencies.py

# FastAPI dependency functions for authentication.

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError

from ...models.auth import TokenData
from ...shared.logger import get_logger
from .security import verify_token

logger = get_logger("auth")

# Looks for the 'Authorization: Bearer <token>' header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenData:
    """
    FastAPI dependency to get the current user from the JWT token in the Authorization header.

    Raises:
        HTTPException: If the token is invalid, expired, or the payload is incorrect.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(token)
    if payload is None:
        logger.info("Token verification failed (invalid signature or expired)")
        raise credentials_exception

    try:
        return TokenData(**payload)
    except ValidationError as e:
        logger.warning("Token payload does not match TokenData", error=str(e))
        raise credentials_exception
