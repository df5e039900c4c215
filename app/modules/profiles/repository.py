import uuid
from typing import Iterable, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.enums import Role
from app.modules.profiles.models import Profile

class ProfileRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_many(self, ids: Iterable[uuid.UUID]) -> Sequence[Profile]:
        ids = list(set(ids))
        if not ids:
            return []
        res = await self.session.execute(select(Profile).where(Profile.id.in_(ids)))
        return res.scalars().all()

    async def list_staff(self) -> Sequence[Profile]:
        q = select(Profile).where(
            Profile.role.in_([Role.attendant, Role.manager]),
            Profile.is_active.is_(True),
        ).order_by(Profile.full_name.asc(), Profile.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()
