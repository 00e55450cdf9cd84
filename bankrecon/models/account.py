"""Bank account (IBAN) model.

Owned by the CRUD layer; the sync engine only reads it and writes last_sync_date.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bankrecon.database import Base
from bankrecon.models.base import JSONType, TimestampMixin, UUIDMixin


class SyncFrequency(str, enum.Enum):
    """How often the scheduler should sync an account."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def interval(self) -> timedelta:
        return {
            SyncFrequency.HOURLY: timedelta(hours=1),
            SyncFrequency.DAILY: timedelta(days=1),
            SyncFrequency.WEEKLY: timedelta(weeks=1),
        }[self]


class BankAccount(UUIDMixin, TimestampMixin, Base):
    """An IBAN under reconciliation, with its provider configuration."""

    __tablename__ = "ibans"

    iban: Mapped[str] = mapped_column(String(34), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Provider integration
    api_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    api_credentials: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    sandbox_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sync_frequency: Mapped[SyncFrequency] = mapped_column(
        Enum(
            SyncFrequency,
            name="sync_frequency_enum",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        nullable=False,
        default=SyncFrequency.DAILY,
    )
    last_sync_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_sync_due(self, now: datetime) -> bool:
        """Return True when the account has never synced or its interval elapsed."""
        if self.last_sync_date is None:
            return True
        last = self.last_sync_date
        if last.tzinfo is None and now.tzinfo is not None:
            last = last.replace(tzinfo=now.tzinfo)
        return now - last >= self.sync_frequency.interval
