"""Storage layer for read access to the advisor CRM database."""

from src.storage.database import Database

__all__ = ["Database"]
