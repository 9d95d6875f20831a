"""Database models"""

from occ_repro.models.database import Base, Database, to_async_url
from occ_repro.models.person import Person

__all__ = [
    "Base",
    "Database",
    "Person",
    "to_async_url",
]
