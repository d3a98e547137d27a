from functools import lru_cache

from config import get_settings
from mongodb_manager import MongoDBManager


@lru_cache()
def get_db() -> MongoDBManager:
    """Shared database manager, created on first use"""
    settings = get_settings()
    db = MongoDBManager(mongo_uri=settings.mongo_uri, db_name=settings.mongo_db_name)
    print(f"✅ Using MongoDB database '{settings.mongo_db_name}'")
    return db
