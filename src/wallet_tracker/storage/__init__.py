"""Storage layer - Database schemas and repositories."""

from wallet_tracker.storage.database import DatabaseManager, engine_options, normalize_database_url
from wallet_tracker.storage.models import AddressModel, Base, TransactionModel
from wallet_tracker.storage.repos import (
    AddressRecord,
    AddressRepository,
    TransactionRecord,
    TransactionRepository,
)

__all__ = [
    "AddressModel",
    "AddressRecord",
    "AddressRepository",
    "Base",
    "DatabaseManager",
    "TransactionModel",
    "TransactionRecord",
    "TransactionRepository",
    "engine_options",
    "normalize_database_url",
]
