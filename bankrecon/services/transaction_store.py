"""Idempotent persistence of provider transactions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.logger import get_logger
from bankrecon.models import BankTransaction
from bankrecon.schemas.banking import NormalizedTransaction
from bankrecon.services.banking.errors import IngestionFailedError

logger = get_logger(__name__)

RAW_PAYLOAD_VERSION = 1


@dataclass
class IngestResult:
    transaction: BankTransaction
    is_new: bool


async def get_stored_transaction(
    db: AsyncSession, iban_id: UUID, external_transaction_id: str
) -> BankTransaction | None:
    result = await db.execute(
        select(BankTransaction).where(
            BankTransaction.iban_id == iban_id,
            BankTransaction.external_transaction_id == external_transaction_id,
        )
    )
    return result.scalar_one_or_none()


def _build_row(iban_id: UUID, txn: NormalizedTransaction) -> BankTransaction:
    return BankTransaction(
        iban_id=iban_id,
        external_transaction_id=txn.external_transaction_id,
        booking_date=txn.booking_date,
        value_date=txn.value_date,
        amount=txn.amount,
        currency=txn.currency,
        description=txn.description,
        balance=txn.balance,
        creditor_name=txn.creditor_name,
        debtor_name=txn.debtor_name,
        remittance_info=txn.remittance_info,
        purpose_code=txn.purpose_code,
        end_to_end_id=txn.end_to_end_id,
        is_matched=False,
        raw_payload=txn.raw or None,
        raw_payload_version=RAW_PAYLOAD_VERSION,
    )


async def ingest_transaction(db: AsyncSession, iban_id: UUID, txn: NormalizedTransaction) -> IngestResult:
    """Store ``txn`` for ``iban_id`` unless it already exists.

    Existing rows are returned untouched with ``is_new=False``. The insert is
    flushed, not committed; the caller owns the unit of work. When a concurrent
    writer inserts the same key first, the session is rolled back and the
    winner's row is returned.

    Raises:
        IngestionFailedError: Any other storage fault
    """
    try:
        existing = await get_stored_transaction(db, iban_id, txn.external_transaction_id)
        if existing is not None:
            return IngestResult(existing, is_new=False)

        row = _build_row(iban_id, txn)
        db.add(row)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            winner = await get_stored_transaction(db, iban_id, txn.external_transaction_id)
            if winner is None:
                raise
            logger.info(
                "Transaction inserted concurrently; using existing row",
                iban_id=str(iban_id),
                external_transaction_id=txn.external_transaction_id,
            )
            return IngestResult(winner, is_new=False)
    except SQLAlchemyError as exc:
        raise IngestionFailedError(
            f"Failed to store transaction {txn.external_transaction_id}: {type(exc).__name__}"
        ) from exc

    return IngestResult(row, is_new=True)


def decode_raw_payload(stored: BankTransaction) -> dict[str, Any] | None:
    """Return the archived provider payload (debugging and audit only).

    Raises ValueError for a payload written under an unknown schema version.
    """
    if stored.raw_payload is None:
        return None
    if stored.raw_payload_version != RAW_PAYLOAD_VERSION:
        raise ValueError(
            f"Unsupported raw payload version {stored.raw_payload_version} for transaction {stored.id}"
        )
    return dict(stored.raw_payload)
