"""Role directory: who holds a role, looked up on demand."""

from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User, UserRole


class RoleDirectory(Protocol):
    """Lookup of users by role, injected into the services that fan out."""

    async def list_users_by_role(self, role: UserRole) -> Sequence[User]:
        ...


class SqlRoleDirectory:
    """RoleDirectory backed by the users table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_users_by_role(self, role: UserRole) -> Sequence[User]:
        result = await self._session.execute(
            select(User).where(User.role == role).order_by(User.created_at.asc())
        )
        return result.scalars().all()
