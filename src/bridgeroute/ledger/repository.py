"""Repository for transaction records."""

import json
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bridgeroute.ledger.database import get_db
from bridgeroute.ledger.models import TransactionRecord

logger = logging.getLogger(__name__)


def _source_hash(record: dict) -> Optional[str]:
    """Last broadcast hash, which is the bridge transaction once submitted."""
    hashes = [h for h in record.get("step_hashes") or [] if h]
    return hashes[-1] if hashes else None


class TransactionRepository:
    """Database operations on transaction records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, record: dict) -> TransactionRecord:
        """Insert or update a record built by Transaction.to_record()."""
        row = await self.session.get(TransactionRecord, record["id"])
        quote = record["quote"]
        if row is None:
            row = TransactionRecord(
                id=record["id"],
                account=record["account"].lower(),
                provider=quote["provider"],
                from_chain_id=quote["request"]["from_chain"]["chain_id"],
                to_chain_id=quote["request"]["to_chain"]["chain_id"],
                created_at=record["created_at"],
            )
            self.session.add(row)
        row.status = record["status"]
        row.source_tx_hash = _source_hash(record)
        row.updated_at = record["updated_at"]
        row.payload = json.dumps(record)
        await self.session.flush()
        return row

    async def get(self, transaction_id: str) -> Optional[dict]:
        row = await self.session.get(TransactionRecord, transaction_id)
        return json.loads(row.payload) if row else None

    async def list_updated_since(self, cutoff: float) -> list[dict]:
        """Records touched after `cutoff` (unix time), oldest first."""
        stmt = (
            select(TransactionRecord)
            .where(TransactionRecord.updated_at >= cutoff)
            .order_by(TransactionRecord.created_at)
        )
        result = await self.session.execute(stmt)
        return [json.loads(row.payload) for row in result.scalars().all()]


class TransactionArchive:
    """Durable sink for the transaction store.

    Each call runs in its own session. Write failures are logged and do
    not interrupt the in-memory lifecycle.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url

    async def save(self, record: dict) -> bool:
        try:
            async with get_db(self.database_url) as session:
                await TransactionRepository(session).upsert(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist transaction {record['id']}: {e}")
            return False
        return True

    async def load_since(self, cutoff: float) -> list[dict]:
        async with get_db(self.database_url) as session:
            return await TransactionRepository(session).list_updated_since(cutoff)
