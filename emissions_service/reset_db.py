# reset_db.py
import logging

from emissions_service.database import engine, metadata
from emissions_service.models import ALL_TABLES

logger = logging.getLogger("emissions-service.reset_db")


def reset_tables(bind=engine):
    logger.info("🔄 Dropping tables...")
    metadata.drop_all(bind, tables=ALL_TABLES)
    logger.info("🧱 Creating tables...")
    metadata.create_all(bind)
    logger.info("✅ Tables recreated successfully!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    reset_tables()
