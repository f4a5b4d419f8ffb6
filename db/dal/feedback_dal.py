from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from db.models import SwapFeedback


async def get_feedback_for_period(
        session: AsyncSession, email: str, month: str, year: str) -> Optional[SwapFeedback]:
    stmt = select(SwapFeedback).where(
        SwapFeedback.email == email,
        SwapFeedback.month == month,
        SwapFeedback.year == year,
    ).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def create_feedback(session: AsyncSession, feedback_data: Dict[str, Any]) -> SwapFeedback:
    feedback = SwapFeedback(**feedback_data)
    session.add(feedback)
    await session.flush()
    await session.refresh(feedback)
    return feedback
