"""Ledger module for durable transaction records."""

from bridgeroute.ledger.database import close_db, get_db, init_db
from bridgeroute.ledger.models import TransactionRecord
from bridgeroute.ledger.repository import TransactionArchive, TransactionRepository

__all__ = [
    # Models
    "TransactionRecord",
    # Database
    "get_db",
    "init_db",
    "close_db",
    "TransactionRepository",
    "TransactionArchive",
]
