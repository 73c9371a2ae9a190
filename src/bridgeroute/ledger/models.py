"""SQLAlchemy models for durable transaction records."""

from typing import Optional

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TransactionRecord(Base):
    """Flat record of a bridge transaction.

    The full transaction (quote included) is kept as JSON in `payload`;
    the other columns exist for lookups.
    """

    __tablename__ = "bridge_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    from_chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    to_chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    source_tx_hash: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_bridge_transactions_updated_at", "updated_at"),)
