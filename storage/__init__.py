"""
Storage Package.

All persistent state of the risk core.

Modules:
- database: engine, sessions, transaction scope
- models/: ORM models
- repositories/: data access layer
"""

from storage.database import Database, get_database_url, init_database

__all__ = [
    "Database",
    "get_database_url",
    "init_database",
]
