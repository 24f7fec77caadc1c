"""
Identity dependencies for FastAPI routes.

The owner of a draft comes from the optional X-User-Id header (set by the
frontend).  Anonymous requests are allowed and produce null-owner drafts.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Header


async def get_optional_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """Extract user ID if present, return None for anonymous requests."""
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()
