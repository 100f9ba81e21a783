"""Identity forwarded by the upstream auth layer.

The gateway authenticates callers and forwards ``X-Session-User`` (members)
or ``X-Admin-User`` (operators). Both are trusted as pre-validated here.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from .security import require_admin_api_key


def _parse_identity(raw: str | None, *, label: str) -> UUID:
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {label} context",
        )
    try:
        return UUID(raw)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {label} identifier",
        ) from error


async def require_user_id(session_user: str | None = Header(None, alias="X-Session-User")) -> UUID:
    return _parse_identity(session_user, label="session user")


async def require_admin_id(
    admin_user: str | None = Header(None, alias="X-Admin-User"),
    _: None = Depends(require_admin_api_key),
) -> UUID:
    return _parse_identity(admin_user, label="admin user")
