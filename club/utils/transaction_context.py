"""
Context manager для атомарных транзакций леджера с автоматическим rollback.

Использование:
    effects = PendingEffects()
    async with TransactionContext(session, effects=effects) as tx:
        await ledger.reserve_swap(session, cycle_id, product_id)
        effects.enqueue(...)
    # commit прошел -> effects запечатан, можно отдавать диспетчеру
    await dispatcher.dispatch(effects)
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from club.services.dispatcher import PendingEffects


class TransactionContext:
    """
    Async context manager для транзакций с гарантированным commit/rollback.

    Обеспечивает:
    - Автоматический commit при успешном завершении
    - Автоматический rollback при исключениях (исключение пробрасывается дальше)
    - Явный commit() внутри блока для саг, которые фиксируют леджер раньше
      внешнего вызова
    - Запечатывание PendingEffects только после подтвержденного commit
    """

    def __init__(
        self,
        session: AsyncSession,
        effects: Optional[PendingEffects] = None,
    ):
        self.session = session
        self.effects = effects
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    async def __aenter__(self):
        self._committed = False
        logging.debug("TransactionContext: Entering transaction context")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                if self._committed:
                    # Ledger already durable; only the later step failed
                    logging.warning(
                        f"TransactionContext: {exc_type.__name__} after explicit commit, nothing to roll back"
                    )
                else:
                    logging.warning(
                        f"TransactionContext: Exception occurred, rolling back: {exc_type.__name__}"
                    )
                    await self.session.rollback()

            elif not self._committed:
                logging.debug("TransactionContext: Committing transaction")
                await self.session.commit()
                self._mark_committed()

            else:
                logging.debug("TransactionContext: Nothing left to commit")

        except Exception as e:
            logging.error(
                f"TransactionContext: Error during commit/rollback: {e}",
                exc_info=True
            )
            try:
                await self.session.rollback()
            except Exception as rollback_error:
                logging.critical(
                    f"TransactionContext: Failed to rollback after error: {rollback_error}",
                    exc_info=True
                )
            raise

        return False

    async def commit(self):
        """
        Явный commit внутри контекста.

        Используется сагой обмена: леджер фиксируется до обновления
        метаданных подписки в биллинге.
        """
        if not self._committed:
            logging.debug("TransactionContext: Explicit commit called")
            await self.session.commit()
            self._mark_committed()
        else:
            logging.warning("TransactionContext: Commit called but transaction already committed")

    def _mark_committed(self):
        self._committed = True
        if self.effects is not None:
            self.effects.seal()
