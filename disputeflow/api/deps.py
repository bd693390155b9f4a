from collections.abc import AsyncGenerator

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from disputeflow.common.enums import ActorRole
from disputeflow.common.exceptions import PermissionDeniedError
from disputeflow.core.disputes.schemas import Actor
from disputeflow.core.disputes.service import DisputeService
from disputeflow.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_actor(
    x_actor_id: str | None = Header(None, description="Authenticated user id set by the gateway"),
    x_actor_role: str = Header(ActorRole.USER.value, description="user | admin"),
) -> Actor:
    if not x_actor_id:
        raise PermissionDeniedError("Missing caller identity")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise PermissionDeniedError(f"Unknown role: {x_actor_role}")
    return Actor(id=x_actor_id, role=role)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionDeniedError("This action requires the admin role")
    return actor


def get_dispute_service() -> DisputeService:
    return DisputeService()
