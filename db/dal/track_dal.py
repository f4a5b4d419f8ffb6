from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from db.models import Track


async def create_track(session: AsyncSession, track_data: dict) -> Track:
    new_track = Track(**track_data)
    session.add(new_track)
    await session.flush()
    await session.refresh(new_track)
    return new_track


async def get_active_tracks(session: AsyncSession) -> List[Track]:
    stmt = select(Track).where(Track.is_active == True).order_by(Track.value)
    result = await session.execute(stmt)
    return result.scalars().all()

