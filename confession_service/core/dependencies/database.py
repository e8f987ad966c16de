"""Database dependencies for FastAPI route handlers.

Route handlers take `SessionDep`; background code (the delivery worker,
taskiq tasks) uses `get_async_session()` from infra.database directly. Both
share the same session factory.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from confession_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for a request-scoped database session.

    Example:
        @router.get("/notifications")
        async def list_notifications(session: SessionDep):
            ...
    """
    async with get_async_session() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
