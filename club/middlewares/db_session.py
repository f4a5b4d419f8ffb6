import logging
from typing import Awaitable, Callable

from aiohttp import web
from sqlalchemy.ext.asyncio import async_sessionmaker

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def db_session_middleware(async_session_factory: async_sessionmaker):
    """
    Одна сессия на запрос: request["session"].

    Транзакциями управляют сами саги (TransactionContext); здесь только
    страховочный rollback, если handler упал с открытой транзакцией.
    """
    if async_session_factory is None:
        logging.critical("db_session_middleware: async_session_factory is None!")
        raise RuntimeError("async_session_factory not provided to db_session_middleware")

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        async with async_session_factory() as session:
            request["session"] = session
            try:
                return await handler(request)
            except Exception:
                if session.in_transaction():
                    await session.rollback()
                    logging.debug("db_session_middleware: open transaction rolled back")
                raise

    return middleware
