"""Bank transaction to movement matching engine.

Scores every candidate movement against a newly stored bank transaction on a
0-100 scale and links the best one when it clears the review threshold.

Score components (max points):
- amount: 40 exact, 35 within 1%, 20 within 5% of the movement amount
- date: 30 same day, 25 within 1 day, 15 within 3, 5 within 7
- direction: 15 when movement type agrees with the transaction sign
- text: 15 for two or more shared words, 7.5 for one
- invoice bonus: +10 when the invoice/document number appears in the remittance text
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from uuid import UUID

import yaml
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.logger import get_logger
from bankrecon.models import BankTransaction, Movement, MovementType, VerificationStatus

logger = get_logger(__name__)

MAX_SCORE = Decimal("100")
MAX_CLAIM_ATTEMPTS = 3
MIN_TOKEN_LENGTH = 4


@dataclass(frozen=True)
class MatchingConfig:
    """Decision thresholds and scoring knobs."""

    matched_threshold: Decimal = Decimal("90")
    review_threshold: Decimal = Decimal("70")
    window_days: int = 7
    invoice_bonus: Decimal = Decimal("10")


@dataclass
class MatchResult:
    """Best candidate for one transaction."""

    movement: Movement
    score: Decimal
    # Score components are point values, not money
    breakdown: dict[str, float]


@dataclass
class MatchOutcome:
    movement_id: UUID
    score: Decimal
    status: VerificationStatus


DEFAULT_CONFIG = MatchingConfig()

_config_cache: MatchingConfig | None = None


def load_matching_config(force_reload: bool = False) -> MatchingConfig:
    """Load thresholds from config/matching.yaml, then apply env overrides.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = Path(__file__).resolve().parents[2] / "config" / "matching.yaml"

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            matching = raw.get("matching", {})
            thresholds = matching.get("thresholds", {})
            config = MatchingConfig(
                matched_threshold=Decimal(str(thresholds.get("matched", config.matched_threshold))),
                review_threshold=Decimal(str(thresholds.get("review", config.review_threshold))),
                window_days=int(matching.get("window_days", config.window_days)),
                invoice_bonus=Decimal(str(matching.get("invoice_bonus", config.invoice_bonus))),
            )
        except (yaml.YAMLError, OSError, ArithmeticError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                "Failed to load matching config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )

    matched_env = os.getenv("MATCHING_MATCHED_THRESHOLD")
    review_env = os.getenv("MATCHING_REVIEW_THRESHOLD")
    if matched_env:
        config = replace(config, matched_threshold=Decimal(matched_env))
    if review_env:
        config = replace(config, review_threshold=Decimal(review_env))

    _config_cache = config
    return config


# =============================================================================
# Scoring
# =============================================================================


def score_amount(movement_amount: Decimal, txn_amount: Decimal) -> Decimal:
    """Compare absolute values; tolerances are relative to the movement amount."""
    expected = abs(movement_amount)
    diff = abs(expected - abs(txn_amount))
    if diff == 0:
        return Decimal("40")
    if diff <= expected * Decimal("0.01"):
        return Decimal("35")
    if diff <= expected * Decimal("0.05"):
        return Decimal("20")
    return Decimal("0")


def score_date(flow_date: date, booking_date: date) -> Decimal:
    diff_days = abs((flow_date - booking_date).days)
    if diff_days == 0:
        return Decimal("30")
    if diff_days <= 1:
        return Decimal("25")
    if diff_days <= 3:
        return Decimal("15")
    if diff_days <= 7:
        return Decimal("5")
    return Decimal("0")


def score_direction(movement_type: MovementType, txn_amount: Decimal) -> Decimal:
    # Zero amounts count as outgoing
    is_income = movement_type == MovementType.INCOME
    return Decimal("15") if is_income == (txn_amount > 0) else Decimal("0")


def tokenize(value: str | None) -> list[str]:
    """Lowercase whitespace tokens of at least MIN_TOKEN_LENGTH chars, first occurrence order."""
    if not value:
        return []
    seen: dict[str, None] = {}
    for token in value.lower().split():
        if len(token) >= MIN_TOKEN_LENGTH:
            seen.setdefault(token, None)
    return list(seen)


def shared_tokens(notes: str | None, description: str | None) -> list[str]:
    """Movement tokens contained in, or containing, some transaction token."""
    txn_tokens = tokenize(description)
    if not txn_tokens:
        return []
    return [
        token
        for token in tokenize(notes)
        if any(token in other or other in token for other in txn_tokens)
    ]


def score_text(notes: str | None, description: str | None) -> Decimal:
    shared = len(shared_tokens(notes, description))
    if shared >= 2:
        return Decimal("15")
    if shared == 1:
        return Decimal("7.5")
    return Decimal("0")


def invoice_reference(movement: Movement) -> str | None:
    for value in (movement.invoice_number, movement.document_number):
        if value and value.strip():
            return value.strip()
    return None


def score_invoice_bonus(movement: Movement, remittance_info: str | None, config: MatchingConfig) -> Decimal:
    reference = invoice_reference(movement)
    if reference and remittance_info and reference in remittance_info:
        return config.invoice_bonus
    return Decimal("0")


def calculate_match_score(
    movement: Movement,
    txn: BankTransaction,
    config: MatchingConfig | None = None,
) -> tuple[Decimal, dict[str, float]]:
    """Return (score, breakdown) for one movement/transaction pair.

    The score is capped at 100 after the invoice bonus.
    """
    config = config or load_matching_config()
    components = {
        "amount": score_amount(movement.amount, txn.amount),
        "date": score_date(movement.flow_date, txn.booking_date),
        "direction": score_direction(movement.type, txn.amount),
        "text": score_text(movement.notes, txn.description),
        "invoice_bonus": score_invoice_bonus(movement, txn.remittance_info, config),
    }
    total = min(sum(components.values(), Decimal("0")), MAX_SCORE)
    return total, {name: float(value) for name, value in components.items()}


def find_best_match(
    txn: BankTransaction,
    candidates: Sequence[Movement],
    config: MatchingConfig | None = None,
) -> MatchResult | None:
    """Highest scoring candidate; ties keep the earliest candidate."""
    config = config or load_matching_config()
    best: MatchResult | None = None
    for movement in candidates:
        score, breakdown = calculate_match_score(movement, txn, config)
        if best is None or score > best.score:
            best = MatchResult(movement=movement, score=score, breakdown=breakdown)
    return best


def classify_score(score: Decimal, config: MatchingConfig | None = None) -> VerificationStatus | None:
    """Map a score to the movement status it earns, or None below review threshold."""
    config = config or load_matching_config()
    if score >= config.matched_threshold:
        return VerificationStatus.MATCHED
    if score >= config.review_threshold:
        return VerificationStatus.PARTIALLY_MATCHED
    return None


# =============================================================================
# Persistence
# =============================================================================


async def find_candidate_movements(
    db: AsyncSession,
    iban_id: UUID,
    booking_date: date,
    window_days: int | None = None,
) -> list[Movement]:
    """Unverified movements of the same account with flow date in booking_date ± window."""
    if window_days is None:
        window_days = load_matching_config().window_days
    window = timedelta(days=window_days)
    stmt = (
        select(Movement)
        .where(
            Movement.iban_id == iban_id,
            Movement.verification_status == VerificationStatus.UNVERIFIED,
            Movement.flow_date >= booking_date - window,
            Movement.flow_date <= booking_date + window,
        )
        .order_by(Movement.flow_date, Movement.created_at, Movement.id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def claim_match(
    db: AsyncSession,
    txn: BankTransaction,
    result: MatchResult,
    status: VerificationStatus,
    now: datetime | None = None,
) -> bool:
    """Link ``txn`` and ``result.movement`` with conditional updates.

    The transaction is claimed only while unmatched and the movement only while
    still unverified. Returns False (leaving both rows as they were) when
    another writer got there first. Does not commit.
    """
    now = now or datetime.now(UTC)
    movement = result.movement

    txn_claim = await db.execute(
        update(BankTransaction)
        .where(BankTransaction.id == txn.id, BankTransaction.is_matched.is_(False))
        .values(is_matched=True, movement_id=movement.id, matched_at=now)
    )
    if txn_claim.rowcount != 1:
        return False

    movement_claim = await db.execute(
        update(Movement)
        .where(
            Movement.id == movement.id,
            Movement.verification_status == VerificationStatus.UNVERIFIED,
        )
        .values(
            verification_status=status,
            is_verified=status == VerificationStatus.MATCHED,
            bank_transaction_id=txn.id,
            match_score=result.score,
            last_verification_date=now,
        )
    )
    if movement_claim.rowcount != 1:
        # Movement lost to another writer: release the transaction again
        await db.execute(
            update(BankTransaction)
            .where(BankTransaction.id == txn.id)
            .values(is_matched=False, movement_id=None, matched_at=None)
        )
        return False

    await db.flush()
    return True


async def match_transaction(
    db: AsyncSession,
    txn: BankTransaction,
    config: MatchingConfig | None = None,
    now: datetime | None = None,
) -> MatchOutcome | None:
    """Match one stored transaction against its account's open movements.

    On a lost claim the candidate pool is re-read (the claimed movement drops
    out) and matching is retried up to MAX_CLAIM_ATTEMPTS times. Does not commit.
    """
    config = config or load_matching_config()
    now = now or datetime.now(UTC)

    for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
        candidates = await find_candidate_movements(db, txn.iban_id, txn.booking_date, config.window_days)
        best = find_best_match(txn, candidates, config)
        if best is None:
            return None

        status = classify_score(best.score, config)
        if status is None:
            logger.debug(
                "Best candidate below review threshold",
                transaction_id=str(txn.id),
                score=float(best.score),
            )
            return None

        if await claim_match(db, txn, best, status, now):
            logger.info(
                "Transaction matched",
                transaction_id=str(txn.id),
                movement_id=str(best.movement.id),
                score=float(best.score),
                status=status.value,
                breakdown=best.breakdown,
            )
            return MatchOutcome(movement_id=best.movement.id, score=best.score, status=status)

        logger.info(
            "Match claim lost to concurrent writer",
            transaction_id=str(txn.id),
            movement_id=str(best.movement.id),
            attempt=attempt,
        )

    return None
