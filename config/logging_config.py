import logging
import sys

from config.settings import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings) -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)
    # aiohttp access/client noise
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    if not settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.info(f"Logging configured at level {settings.LOG_LEVEL}")
