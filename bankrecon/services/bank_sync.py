"""Bank sync orchestration: fetch, ingest, match, summarize."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankrecon.config import settings
from bankrecon.database import get_session_maker
from bankrecon.logger import async_log_timing, get_logger, log_exception, mask_iban
from bankrecon.models import BankAccount
from bankrecon.services.banking import (
    BankProviderAdapter,
    BankSyncError,
    IbanNotFoundError,
    SyncConfigurationError,
    get_adapter,
)
from bankrecon.services.matching import MatchingConfig, load_matching_config, match_transaction
from bankrecon.services.transaction_store import ingest_transaction

logger = get_logger(__name__)

AdapterFactory = Callable[..., BankProviderAdapter]


@dataclass
class AccountSyncResult:
    synced: int = 0
    matched: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class SyncRunResult:
    total_synced: int = 0
    total_matched: int = 0
    errors: list[str] = field(default_factory=list)
    accounts_processed: int = 0
    cancelled: bool = False


def describe_error(exc: BaseException) -> str:
    """Operator-facing text for an error: actionable summary plus detail."""
    detail = str(exc) or type(exc).__name__
    if isinstance(exc, BankSyncError):
        return f"{exc.user_message} ({detail})"
    return detail


def sync_window(now: datetime, lookback_days: int | None = None) -> tuple[date, date]:
    """Return (from_date, to_date) covering the lookback period ending today."""
    days = settings.bank_sync_lookback_days if lookback_days is None else lookback_days
    to_date = now.date()
    return to_date - timedelta(days=days), to_date


async def load_syncable_account(db: AsyncSession, iban_id: UUID) -> BankAccount:
    """Load an account and check it may be synced.

    Raises:
        IbanNotFoundError: No account row with this id
        SyncConfigurationError: Inactive, auto-sync disabled or no provider
    """
    account = await db.get(BankAccount, iban_id)
    if account is None:
        raise IbanNotFoundError(f"IBAN {iban_id} not found")
    if not account.api_provider or not account.auto_sync_enabled or not account.is_active:
        raise SyncConfigurationError(
            f"IBAN {mask_iban(account.iban)} is not configured for automatic synchronization",
            provider=account.api_provider,
        )
    return account


async def sync_account(
    db: AsyncSession,
    iban_id: UUID,
    *,
    now: datetime | None = None,
    stop_event: asyncio.Event | None = None,
    adapter_factory: AdapterFactory = get_adapter,
    config: MatchingConfig | None = None,
) -> AccountSyncResult:
    """Sync one IBAN: fetch the lookback window, store new transactions, match them.

    Each transaction is its own unit of work; a failure there is recorded in
    ``errors`` and the pass continues. Account-level failures (lookup,
    configuration, authentication, account resolution, fetch) raise.
    ``last_sync_date`` is only written after a complete pass.
    """
    now = now or datetime.now(UTC)
    config = config or load_matching_config()

    account = await load_syncable_account(db, iban_id)
    # Rollbacks below expire ORM state; keep plain values
    account_id = account.id
    iban = account.iban
    provider = account.api_provider
    credentials = dict(account.api_credentials or {})
    sandbox = account.sandbox_mode

    from_date, to_date = sync_window(now)
    log = logger.bind(iban=mask_iban(iban), provider=provider)
    log.info("Starting account sync", date_from=from_date.isoformat(), date_to=to_date.isoformat())

    adapter = adapter_factory(provider, sandbox=sandbox)
    transactions = await adapter.fetch(credentials, iban, from_date, to_date)

    result = AccountSyncResult()
    for normalized in transactions:
        if stop_event is not None and stop_event.is_set():
            result.cancelled = True
            break
        try:
            ingested = await ingest_transaction(db, account_id, normalized)
            outcome = None
            if ingested.is_new:
                outcome = await match_transaction(db, ingested.transaction, config, now)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            log_exception(
                log,
                exc,
                "Failed to process transaction",
                level="warning",
                external_transaction_id=normalized.external_transaction_id,
            )
            result.errors.append(f"Transaction {normalized.external_transaction_id}: {exc}")
            continue

        if ingested.is_new:
            result.synced += 1
        if outcome is not None:
            result.matched += 1

    if not result.cancelled:
        await db.execute(
            update(BankAccount).where(BankAccount.id == account_id).values(last_sync_date=now)
        )
        await db.commit()

    log.info(
        "Account sync finished",
        fetched=len(transactions),
        synced=result.synced,
        matched=result.matched,
        error_count=len(result.errors),
        cancelled=result.cancelled,
    )
    return result


async def list_sync_accounts(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    due_only: bool = False,
) -> list[BankAccount]:
    """Active, auto-sync enabled accounts with a provider, oldest first."""
    stmt = (
        select(BankAccount)
        .where(
            BankAccount.is_active.is_(True),
            BankAccount.auto_sync_enabled.is_(True),
            BankAccount.api_provider.is_not(None),
        )
        .order_by(BankAccount.created_at, BankAccount.id)
    )
    accounts = list((await db.execute(stmt)).scalars().all())
    if due_only:
        now = now or datetime.now(UTC)
        accounts = [account for account in accounts if account.is_sync_due(now)]
    return accounts


async def sync_all_enabled_accounts(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    now: datetime | None = None,
    stop_event: asyncio.Event | None = None,
    max_concurrency: int | None = None,
    due_only: bool = False,
    adapter_factory: AdapterFactory = get_adapter,
) -> SyncRunResult:
    """Sync every enabled account through a bounded worker pool.

    Each account runs in its own session. Account failures are reported as
    ``"IBAN <iban>: <message>"`` entries and never abort the run. When
    ``stop_event`` is set no new account is started and in-flight accounts stop
    after their current transaction; the partial result is returned.
    """
    factory = session_factory or get_session_maker()
    now = now or datetime.now(UTC)
    config = load_matching_config()
    limit = max(1, max_concurrency or settings.bank_sync_max_concurrency)

    async with factory() as db:
        accounts = await list_sync_accounts(db, now=now, due_only=due_only)
        targets = [(account.id, account.iban) for account in accounts]

    logger.info("Starting bank sync run", accounts=len(targets), max_concurrency=limit, due_only=due_only)

    semaphore = asyncio.Semaphore(limit)

    async def run_one(iban_id: UUID, iban: str) -> AccountSyncResult | str | None:
        async with semaphore:
            if stop_event is not None and stop_event.is_set():
                return None
            async with factory() as session:
                try:
                    return await sync_account(
                        session,
                        iban_id,
                        now=now,
                        stop_event=stop_event,
                        adapter_factory=adapter_factory,
                        config=config,
                    )
                except Exception as exc:
                    log_exception(
                        logger,
                        exc,
                        "Account sync failed",
                        include_traceback=not isinstance(exc, BankSyncError),
                        iban=mask_iban(iban),
                    )
                    return f"IBAN {iban}: {describe_error(exc)}"

    run = SyncRunResult()
    async with async_log_timing("Bank sync run", logger=logger, due_only=due_only) as timing:
        outcomes = await asyncio.gather(*(run_one(iban_id, iban) for iban_id, iban in targets))

        for outcome in outcomes:
            if outcome is None:
                run.cancelled = True
                continue
            run.accounts_processed += 1
            if isinstance(outcome, str):
                run.errors.append(outcome)
                continue
            run.total_synced += outcome.synced
            run.total_matched += outcome.matched
            run.errors.extend(outcome.errors)
            run.cancelled = run.cancelled or outcome.cancelled

        timing.update(
            accounts_processed=run.accounts_processed,
            total_synced=run.total_synced,
            total_matched=run.total_matched,
            error_count=len(run.errors),
            cancelled=run.cancelled,
        )
    return run


async def run_bank_sync_scheduler(
    stop_event: asyncio.Event,
    *,
    interval_seconds: float | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    """Sync due accounts periodically until stop_event is set."""
    interval = interval_seconds if interval_seconds is not None else settings.bank_sync_interval_seconds
    while not stop_event.is_set():
        try:
            await sync_all_enabled_accounts(session_factory, stop_event=stop_event, due_only=True)
        except Exception:
            logger.exception("Scheduled bank sync failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except TimeoutError:
            continue
