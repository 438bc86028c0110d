# src/dualstore/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, Database, upsert_insert

__all__ = ["Base", "Database", "upsert_insert"]
