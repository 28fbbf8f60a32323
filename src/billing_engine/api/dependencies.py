"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.auth import Principal
from billing_engine.database import init_db


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    One transaction per request: committed when the handler returns,
    rolled back if it raises.
    """
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_org_ids: Annotated[str | None, Header()] = None,
    x_system_admin: Annotated[str | None, Header()] = None,
) -> Principal:
    """Resolve the caller from identity headers set by the auth proxy."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    org_ids = frozenset(
        _parse_uuid(part, "X-Org-IDs") for part in (x_org_ids or "").split(",") if part.strip()
    )
    return Principal(
        user_id=_parse_uuid(x_user_id, "X-User-ID"),
        is_system_admin=(x_system_admin or "").strip().lower() == "true",
        org_ids=org_ids,
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
