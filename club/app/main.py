import logging

from aiohttp import web

from config.logging_config import setup_logging
from config.settings import get_settings
from club.app.factories.build_services import build_core_services
from club.app.web_app import create_app
from db.database import build_engine, build_session_factory


def main() -> None:
    settings = get_settings()
    setup_logging(settings)

    engine = build_engine(settings)
    async_session_factory = build_session_factory(engine)
    services = build_core_services(settings)
    app = create_app(settings, services, async_session_factory, engine=engine)

    logging.info(f"Starting subscription API on {settings.WEB_SERVER_HOST}:{settings.WEB_SERVER_PORT}")
    web.run_app(app, host=settings.WEB_SERVER_HOST, port=settings.WEB_SERVER_PORT)


if __name__ == "__main__":
    main()
