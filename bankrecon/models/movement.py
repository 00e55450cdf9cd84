"""Internal financial movement model (income/expense)."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bankrecon.database import Base
from bankrecon.models.base import TimestampMixin, UUIDMixin


class MovementType(str, enum.Enum):
    """Direction of a movement; the stored amount is unsigned."""

    INCOME = "income"
    EXPENSE = "expense"


class VerificationStatus(str, enum.Enum):
    """Bank verification state of a movement."""

    UNVERIFIED = "unverified"
    PARTIALLY_MATCHED = "partially_matched"  # Review required
    MATCHED = "matched"  # High confidence


class Movement(UUIDMixin, TimestampMixin, Base):
    """A recorded income or expense.

    Created and deleted by the CRUD layer. The matching engine writes only the
    verification columns.
    """

    __tablename__ = "movements"

    iban_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("ibans.id"), nullable=True, index=True
    )
    type: Mapped[MovementType] = mapped_column(
        Enum(
            MovementType,
            name="movement_type_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    flow_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    document_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Bank verification
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(
            VerificationStatus,
            name="verification_status_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=VerificationStatus.UNVERIFIED,
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # No FK: bank_transactions.movement_id already references this table
    bank_transaction_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    # 0-100 score, not a monetary value
    match_score: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    last_verification_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
