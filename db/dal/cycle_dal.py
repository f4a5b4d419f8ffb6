from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from db.models import CycleStatus, LedgerCategory, RotationCycle, RotationCycleProduct, Track


async def create_cycle(session: AsyncSession, cycle_data: Dict[str, Any]) -> RotationCycle:
    new_cycle = RotationCycle(**cycle_data)
    session.add(new_cycle)
    await session.flush()
    await session.refresh(new_cycle)
    return new_cycle


async def get_active_cycle(session: AsyncSession) -> Optional[RotationCycle]:
    stmt = select(RotationCycle).where(RotationCycle.status == CycleStatus.active).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_cycle_offerings(session: AsyncSession, cycle_id: int) -> List[Dict[str, Any]]:
    """
    Основные предложения цикла (category = rotm) вместе со значением трека.

    Returns:
        Список словарей: product_id, track_value, newsub_variant_ref, swap_variant_ref
    """
    stmt = (
        select(
            RotationCycleProduct.product_id,
            RotationCycleProduct.newsub_variant_ref,
            RotationCycleProduct.swap_variant_ref,
            Track.value.label("track_value"),
        )
        .join(Track, Track.id == RotationCycleProduct.track_id)
        .where(
            RotationCycleProduct.cycle_id == cycle_id,
            RotationCycleProduct.category == LedgerCategory.rotm,
            RotationCycleProduct.is_active == True,
        )
        .order_by(RotationCycleProduct.id)
    )
    result = await session.execute(stmt)
    return [dict(row._mapping) for row in result.all()]

