"""Storage module for eligibility database operations."""
from .database import get_db, init_db, get_engine, dispose_engine
from .review_store import SqlReviewStore

__all__ = [
    "get_db",
    "init_db",
    "get_engine",
    "dispose_engine",
    "SqlReviewStore",
]
