"""
Request identity for the sales ledger.

Sessions are issued by the upstream auth layer, which forwards the
authenticated user's id in the X-User-Id header. This module only reads it.
"""

from typing import Optional
from fastapi import Header, HTTPException, status

USER_ID_HEADER = "X-User-Id"


def is_authenticated(user_id: Optional[str]) -> bool:
    return bool(user_id and user_id.strip())


def get_current_user_id(x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)) -> str:
    """
    Dependency returning the current user's id, 401 when the request is anonymous.
    """
    if not is_authenticated(x_user_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()


