"""
Apply Alembic migrations for the inventory store.

Usage:
    python run_migrations.py            # upgrade to head
    python run_migrations.py 002        # upgrade to a revision
    python run_migrations.py -1         # step back one revision
    python run_migrations.py --current  # show the applied revision
"""
import logging
import sys

from alembic import command
from alembic.config import Config

from config.logging_config import setup_logging
from config.settings import get_settings


def run_migrations(argv) -> int:
    settings = get_settings()
    setup_logging(settings)

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)

    try:
        if argv and argv[0] == "--current":
            command.current(alembic_cfg, verbose=True)
            return 0

        target = argv[0] if argv else "head"
        logging.info(f"Migrating inventory store to revision '{target}'")
        if not target.startswith("-"):
            command.upgrade(alembic_cfg, target)
        else:
            command.downgrade(alembic_cfg, target)
        logging.info("Migrations applied successfully")
        return 0

    except Exception as e:
        logging.error(f"Error applying migrations: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(run_migrations(sys.argv[1:]))
