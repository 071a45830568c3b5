"""
Declarative base and shared column helpers
"""
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how rows are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
