import logging
from typing import Any, Dict

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from config.settings import Settings
from club.handlers.subscriptions import routes as subscription_routes
from club.middlewares.db_session import db_session_middleware
from club.middlewares.error_middleware import error_middleware


async def _close_services(app: web.Application) -> None:
    services: Dict[str, Any] = app["services"]
    for name in ("billing", "storefront", "cache", "job_queue"):
        service = services.get(name)
        close = getattr(service, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            logging.warning(f"Failed to close {name}: {e}")

    engine: AsyncEngine = app.get("engine")
    if engine is not None:
        await engine.dispose()
    logging.info("Web app resources released")


def create_app(
    settings: Settings,
    services: Dict[str, Any],
    async_session_factory: async_sessionmaker,
    engine: AsyncEngine = None,
) -> web.Application:
    app = web.Application(middlewares=[error_middleware, db_session_middleware(async_session_factory)])
    app["settings"] = settings
    app["services"] = services
    app["engine"] = engine
    for name, service in services.items():
        app[name] = service

    app.add_routes(subscription_routes)
    app.on_cleanup.append(_close_services)
    return app
