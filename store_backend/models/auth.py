# store_backend/models/auth.py

# Pydantic model for the bearer token payload accepted by operator endpoints.
# Token issuance lives in the identity service; this backend only verifies.

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TokenData(BaseModel):
    """
    Data expected within the JWT token payload.
    """
    # Standard JWT 'sub' claim: the user's ID
    sub: str = Field(..., description="Standard JWT subject claim (user ID as string)")

    user_id: str = Field(..., description="Custom claim for explicit user ID (as string)")

    exp: datetime = Field(..., description="Expiration time of the token (UTC)")

    role: Optional[str] = Field(default=None, description="User's role")
