"""
Inventory ledger DAL.

Каждая мутация счетчиков - один условный UPDATE по строке (cycle_id, product_id).
Блокировка строки, которую берет UPDATE, сериализует конкурирующие резервы;
количество затронутых строк - единственный сигнал доступности.
Никаких read-then-write.
"""

from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func

from db.models import CycleStatus, LedgerCategory, RotationCycle, RotationCycleProduct

Ledger = RotationCycleProduct


def _row_criteria(cycle_id: int, product_id: int):
    return (
        Ledger.cycle_id == cycle_id,
        Ledger.product_id == product_id,
        Ledger.is_active == True,
    )


async def _execute_update(session: AsyncSession, stmt) -> int:
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0


# ============================================================================
# ЧТЕНИЕ
# ============================================================================

async def create_ledger_row(session: AsyncSession, row_data: Dict[str, Any]) -> RotationCycleProduct:
    new_row = RotationCycleProduct(**row_data)
    session.add(new_row)
    await session.flush()
    await session.refresh(new_row)
    return new_row


async def get_row(session: AsyncSession, cycle_id: int, product_id: int) -> Optional[RotationCycleProduct]:
    """Existence check, kept apart from the guarded decrements."""
    stmt = select(Ledger).where(*_row_criteria(cycle_id, product_id)).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_row_by_swap_variant(
        session: AsyncSession, cycle_id: int, swap_variant_ref: int) -> Optional[RotationCycleProduct]:
    stmt = select(Ledger).where(
        Ledger.cycle_id == cycle_id,
        Ledger.swap_variant_ref == swap_variant_ref,
        Ledger.is_active == True,
    ).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_track_offering_row(
        session: AsyncSession, cycle_id: int, track_id: int) -> Optional[RotationCycleProduct]:
    stmt = select(Ledger).where(
        Ledger.cycle_id == cycle_id,
        Ledger.track_id == track_id,
        Ledger.category == LedgerCategory.rotm,
        Ledger.is_active == True,
    ).order_by(Ledger.id).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def find_available_swap_row(
        session: AsyncSession,
        product_id: int,
        stop_quantity: int = 0) -> Optional[RotationCycleProduct]:
    """
    Строка активного цикла для товара, у которой swap_qty выше порога остановки.

    Это проба, а не резерв: фактическое списание делает reserve_swap.
    """
    stmt = (
        select(Ledger)
        .join(RotationCycle, RotationCycle.id == Ledger.cycle_id)
        .where(
            RotationCycle.status == CycleStatus.active,
            Ledger.product_id == product_id,
            Ledger.swap_qty > stop_quantity,
            Ledger.is_active == True,
        )
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_counters(session: AsyncSession, cycle_id: int, product_id: int) -> Optional[Dict[str, int]]:
    """Fresh counter values straight from the store (bypasses the identity map)."""
    stmt = select(
        Ledger.existing_sub_qty,
        Ledger.new_sub_qty,
        Ledger.swap_qty,
    ).where(Ledger.cycle_id == cycle_id, Ledger.product_id == product_id)
    result = await session.execute(stmt)
    row = result.first()
    return dict(row._mapping) if row else None


# ============================================================================
# УСЛОВНЫЕ МУТАЦИИ
# ============================================================================

async def reserve_swap(session: AsyncSession, cycle_id: int, product_id: int) -> int:
    """swap -1, guarded by swap > 0."""
    stmt = (
        update(Ledger)
        .where(*_row_criteria(cycle_id, product_id), Ledger.swap_qty > 0)
        .values(swap_qty=Ledger.swap_qty - 1, updated_at=func.now())
    )
    return await _execute_update(session, stmt)


async def release_swap(session: AsyncSession, cycle_id: int, product_id: int) -> int:
    """swap +1, restock is never blocked."""
    stmt = (
        update(Ledger)
        .where(*_row_criteria(cycle_id, product_id))
        .values(swap_qty=Ledger.swap_qty + 1, updated_at=func.now())
    )
    return await _execute_update(session, stmt)


async def reserve_new_sub(session: AsyncSession, cycle_id: int, product_id: int) -> int:
    """newsub -1, guarded by newsub > 0."""
    stmt = (
        update(Ledger)
        .where(*_row_criteria(cycle_id, product_id), Ledger.new_sub_qty > 0)
        .values(new_sub_qty=Ledger.new_sub_qty - 1, updated_at=func.now())
    )
    return await _execute_update(session, stmt)


async def bridge_back(session: AsyncSession, cycle_id: int, product_id: int) -> int:
    """existingsub -1, newsub +1 (a cancelled unswapped subscriber frees a new-subscriber unit)."""
    stmt = (
        update(Ledger)
        .where(*_row_criteria(cycle_id, product_id), Ledger.existing_sub_qty > 0)
        .values(
            existing_sub_qty=Ledger.existing_sub_qty - 1,
            new_sub_qty=Ledger.new_sub_qty + 1,
            updated_at=func.now(),
        )
    )
    return await _execute_update(session, stmt)


async def convert_to_swap(session: AsyncSession, cycle_id: int, product_id: int) -> int:
    """existingsub -1, swap +1 (the product a subscriber swapped away from)."""
    stmt = (
        update(Ledger)
        .where(*_row_criteria(cycle_id, product_id), Ledger.existing_sub_qty > 0)
        .values(
            existing_sub_qty=Ledger.existing_sub_qty - 1,
            swap_qty=Ledger.swap_qty + 1,
            updated_at=func.now(),
        )
    )
    return await _execute_update(session, stmt)

