from typing import Optional

from sqlalchemy.engine import Engine

from .models import Base
from .session import engine

from app.utils.logging import get_logger

logger = get_logger()


def create_tables(bind: Optional[Engine] = None):
    """Create every scheduler and registry table that is missing on `bind` (the app engine by default)."""
    Base.metadata.create_all(bind or engine)
    logger.info("Created all tables.")


def drop_tables(bind: Optional[Engine] = None):
    Base.metadata.drop_all(bind or engine)
    logger.info("Dropped all tables.")


def reset_db(bind: Optional[Engine] = None):
    logger.info("Resetting database...")
    drop_tables(bind)
    create_tables(bind)
    logger.info("Database reset complete.")


if __name__ == "__main__":
    reset_db()
