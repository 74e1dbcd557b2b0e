# database.py
from databases import Database
from sqlalchemy import create_engine, MetaData

from emissions_service.config import DATABASE_URL

# async database client
database = Database(DATABASE_URL)

# SQLAlchemy sync engine for metadata.create_all()
SYNC_DATABASE_URL = DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
engine = create_engine(SYNC_DATABASE_URL)
metadata = MetaData()


def row_to_dict(row):
    """Convert a databases Record (or None) into a plain dict."""
    if row is None:
        return None
    mapping = getattr(row, "_mapping", row)
    return dict(mapping)
