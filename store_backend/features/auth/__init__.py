# store_backend/features/auth/__init__.py

# This file makes the 'auth' directory a Python package.

from .security import create_access_token, verify_token
from .dependencies import oauth2_scheme, get_current_user

__all__ = [
    "create_access_token",
    "verify_token",
    "oauth2_scheme",
    "get_current_user",
]
