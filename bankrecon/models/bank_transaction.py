"""Stored bank transaction model."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from bankrecon.database import Base
from bankrecon.models.base import JSONType


class BankTransaction(Base):
    """A provider transaction persisted for one IBAN.

    Unique on (iban_id, external_transaction_id): re-ingesting the same
    provider id never creates a second row.
    """

    __tablename__ = "bank_transactions"
    __table_args__ = (
        UniqueConstraint(
            "iban_id",
            "external_transaction_id",
            name="uq_bank_transactions_iban_external_id",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    iban_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("ibans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)

    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    # Extra matching data
    creditor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    debtor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remittance_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    purpose_code: Mapped[str | None] = mapped_column(String(35), nullable=True)
    end_to_end_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Matching state
    is_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    movement_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("movements.id", ondelete="SET NULL"), nullable=True
    )
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audit: opaque provider payload, never read by the matching path
    raw_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    raw_payload_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
