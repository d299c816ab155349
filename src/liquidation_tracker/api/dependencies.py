"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.config import Settings, get_settings
from liquidation_tracker.database import init_db
from liquidation_tracker.errors import AuthenticationError, PermissionDeniedError
from liquidation_tracker.models import User
from liquidation_tracker.services.authorization import ActorContext


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency. Uncommitted work is discarded on close."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_current_actor(
    request: Request,
    db: DbSession,
    x_user_id: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """Resolve the acting user from the X-User-ID header."""
    if not x_user_id:
        raise AuthenticationError("X-User-ID header is required.")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise AuthenticationError("Invalid X-User-ID format.") from None

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError("Unknown user.")
    if not user.is_active:
        raise PermissionDeniedError("Your account is inactive.")

    client_ip = request.client.host if request.client else None
    return ActorContext(user=user, ip_address=client_ip)


CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
