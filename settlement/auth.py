"""Admin authentication for protected endpoints.

End-user identity is resolved upstream; this service only distinguishes
admin callers, identified by the shared ``X-Admin-Key`` header.
"""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, HTTPException

from config.settings import settings


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> str:
    """Verify the admin API key (timing-safe)."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(503, "Admin endpoints disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(403, "Invalid admin key")
    return "admin"
