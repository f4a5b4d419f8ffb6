"""
Inventory Ledger service.

Wraps the conditional statements of ``ledger_dal`` and turns affected-row
counts into domain outcomes:

* reserve_swap / reserve_new_sub: 0 rows -> OutOfStockError
* bridge_back / convert_to_swap: 0 rows -> IntegrityError (counter drift)
* release_swap: unconditional restock, never raises on count

An existence check runs before each mutation so that a product that is not
stocked in the cycle (NotFoundError) is told apart from a sold-out pool.
Every successful mutation returns the LedgerDelta list it applied; those
deltas are what the post-commit inventory-adjustment jobs mirror.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from club.errors import IntegrityError, NotFoundError, OutOfStockError
from club.utils.deadlines import call_external
from db.dal import ledger_dal
from db.models import RotationCycleProduct

POOL_SWAP = "swap"
POOL_NEW_SUB = "newsub"
POOL_EXISTING_SUB = "existingsub"


@dataclass(frozen=True)
class LedgerDelta:
    cycle_id: int
    product_id: int
    pool: str
    adjustment: int
    variant_ref: Optional[int] = None


def _variant_ref(row: RotationCycleProduct, pool: str) -> Optional[int]:
    return {
        POOL_SWAP: row.swap_variant_ref,
        POOL_NEW_SUB: row.newsub_variant_ref,
        POOL_EXISTING_SUB: row.existingsub_variant_ref,
    }[pool]


def _delta(row: RotationCycleProduct, pool: str, adjustment: int) -> LedgerDelta:
    return LedgerDelta(
        cycle_id=row.cycle_id,
        product_id=row.product_id,
        pool=pool,
        adjustment=adjustment,
        variant_ref=_variant_ref(row, pool),
    )


class InventoryLedger:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def _run(self, awaitable, what: str):
        return await call_external(awaitable, f"Ledger {what}", self.settings.DB_STATEMENT_TIMEOUT_SECONDS)

    # ==================== Lookups ====================

    async def get_row(self, session: AsyncSession, cycle_id: int, product_id: int) -> Optional[RotationCycleProduct]:
        return await self._run(ledger_dal.get_row(session, cycle_id, product_id), "get_row")

    async def require_row(self, session: AsyncSession, cycle_id: int, product_id: int) -> RotationCycleProduct:
        row = await self.get_row(session, cycle_id, product_id)
        if row is None:
            raise NotFoundError(
                f"Product {product_id} is not stocked in the current cycle.",
                {"cycle_id": cycle_id, "product_id": product_id},
            )
        return row

    async def find_available_swap_row(self, session: AsyncSession, product_id: int) -> RotationCycleProduct:
        """Availability check on the active cycle; honours INVENTORY_STOP_QUANTITY."""
        row = await self._run(
            ledger_dal.find_available_swap_row(session, product_id, self.settings.INVENTORY_STOP_QUANTITY),
            "find_available_swap_row",
        )
        if row is None:
            raise OutOfStockError(
                "Sorry, this record is no longer available for swaps.",
                {"product_id": product_id},
            )
        return row

    async def find_row_by_swap_variant(
            self, session: AsyncSession, cycle_id: int, swap_variant_ref: int) -> Optional[RotationCycleProduct]:
        return await self._run(
            ledger_dal.get_row_by_swap_variant(session, cycle_id, swap_variant_ref),
            "get_row_by_swap_variant",
        )

    async def find_track_offering(
            self, session: AsyncSession, cycle_id: int, track_id: int) -> Optional[RotationCycleProduct]:
        return await self._run(
            ledger_dal.get_track_offering_row(session, cycle_id, track_id),
            "get_track_offering_row",
        )

    def has_swap_stock(self, row: RotationCycleProduct) -> bool:
        return (row.swap_qty or 0) > self.settings.INVENTORY_STOP_QUANTITY

    # ==================== Mutations ====================

    async def reserve_swap(self, session: AsyncSession, cycle_id: int, product_id: int) -> List[LedgerDelta]:
        row = await self.require_row(session, cycle_id, product_id)
        affected = await self._run(ledger_dal.reserve_swap(session, cycle_id, product_id), "reserve_swap")
        if affected == 0:
            raise OutOfStockError(
                "Sorry, this record is no longer available for swaps.",
                {"cycle_id": cycle_id, "product_id": product_id},
            )
        self._expect_single(affected, "reserve_swap", cycle_id, product_id)
        logging.info(f"Ledger: swap -1 cycle={cycle_id} product={product_id}")
        return [_delta(row, POOL_SWAP, -1)]

    async def release_swap(self, session: AsyncSession, cycle_id: int, product_id: int) -> List[LedgerDelta]:
        row = await self.get_row(session, cycle_id, product_id)
        if row is None:
            logging.info(f"Ledger: release_swap skipped, product {product_id} not stocked in cycle {cycle_id}")
            return []
        affected = await self._run(ledger_dal.release_swap(session, cycle_id, product_id), "release_swap")
        if affected == 0:
            logging.warning(f"Ledger: release_swap touched no rows cycle={cycle_id} product={product_id}")
            return []
        self._expect_single(affected, "release_swap", cycle_id, product_id)
        logging.info(f"Ledger: swap +1 cycle={cycle_id} product={product_id}")
        return [_delta(row, POOL_SWAP, +1)]

    async def reserve_new_sub(self, session: AsyncSession, cycle_id: int, product_id: int) -> List[LedgerDelta]:
        row = await self.require_row(session, cycle_id, product_id)
        affected = await self._run(ledger_dal.reserve_new_sub(session, cycle_id, product_id), "reserve_new_sub")
        if affected == 0:
            raise OutOfStockError(
                "Sorry, this product is no longer available.",
                {"cycle_id": cycle_id, "product_id": product_id},
            )
        self._expect_single(affected, "reserve_new_sub", cycle_id, product_id)
        logging.info(f"Ledger: newsub -1 cycle={cycle_id} product={product_id}")
        return [_delta(row, POOL_NEW_SUB, -1)]

    async def bridge_back(self, session: AsyncSession, cycle_id: int, product_id: int) -> List[LedgerDelta]:
        row = await self.require_row(session, cycle_id, product_id)
        affected = await self._run(ledger_dal.bridge_back(session, cycle_id, product_id), "bridge_back")
        if affected != 1:
            raise IntegrityError(
                f"Inventory was not updated (bridge_back product_id: {product_id}).",
                {"cycle_id": cycle_id, "product_id": product_id, "affected_rows": affected},
            )
        logging.info(f"Ledger: existingsub -1, newsub +1 cycle={cycle_id} product={product_id}")
        return [_delta(row, POOL_EXISTING_SUB, -1), _delta(row, POOL_NEW_SUB, +1)]

    async def convert_to_swap(self, session: AsyncSession, cycle_id: int, product_id: int) -> List[LedgerDelta]:
        row = await self.require_row(session, cycle_id, product_id)
        affected = await self._run(ledger_dal.convert_to_swap(session, cycle_id, product_id), "convert_to_swap")
        if affected != 1:
            raise IntegrityError(
                f"Inventory was not updated (current_product_id: {product_id}).",
                {"cycle_id": cycle_id, "product_id": product_id, "affected_rows": affected},
            )
        logging.info(f"Ledger: existingsub -1, swap +1 cycle={cycle_id} product={product_id}")
        return [_delta(row, POOL_EXISTING_SUB, -1), _delta(row, POOL_SWAP, +1)]

    async def release_cancelled(
        self,
        session: AsyncSession,
        cycle_id: int,
        product_id: int,
        was_swapped: bool,
    ) -> List[LedgerDelta]:
        """
        Return a cancelled subscriber's unit to the pools.

        Swapped: swap +1. Not swapped: existingsub -1, newsub +1.
        Products not stocked in this cycle have nothing to release.
        """
        row = await self.get_row(session, cycle_id, product_id)
        if row is None:
            logging.info(
                f"Ledger: cancelled product {product_id} not stocked in cycle {cycle_id}, nothing released"
            )
            return []
        if was_swapped:
            return await self.release_swap(session, cycle_id, product_id)
        return await self.bridge_back(session, cycle_id, product_id)

    @staticmethod
    def _expect_single(affected: int, what: str, cycle_id: int, product_id: int):
        if affected != 1:
            raise IntegrityError(
                f"Unexpected affected row count on {what}.",
                {"cycle_id": cycle_id, "product_id": product_id, "affected_rows": affected},
            )
