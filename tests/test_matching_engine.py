"""Tests for candidate selection and match claiming against the database."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from bankrecon.models import MovementType, VerificationStatus
from bankrecon.services.matching import (
    MatchingConfig,
    MatchResult,
    claim_match,
    find_candidate_movements,
    match_transaction,
)
from tests.factories import BankAccountFactory, BankTransactionFactory, MovementFactory

NOW = datetime(2025, 3, 20, 12, 0, tzinfo=UTC)
CONFIG = MatchingConfig()


class TestFindCandidateMovements:
    @pytest.mark.asyncio
    async def test_only_open_movements_of_account_inside_window(self, db):
        """GIVEN: Movements across accounts, dates and statuses
        WHEN: Selecting candidates for a booking on 2025-03-10
        THEN: Only unverified movements of the same account within ±7 days remain, by flow date"""
        account = await BankAccountFactory.create_async(db)
        other_account = await BankAccountFactory.create_async(db)

        late_edge = await MovementFactory.create_async(db, iban_id=account.id, flow_date=date(2025, 3, 17))
        early_edge = await MovementFactory.create_async(db, iban_id=account.id, flow_date=date(2025, 3, 3))
        await MovementFactory.create_async(db, iban_id=account.id, flow_date=date(2025, 3, 18))
        await MovementFactory.create_async(db, iban_id=other_account.id, flow_date=date(2025, 3, 10))
        await MovementFactory.create_async(
            db,
            iban_id=account.id,
            flow_date=date(2025, 3, 10),
            verification_status=VerificationStatus.PARTIALLY_MATCHED,
        )

        candidates = await find_candidate_movements(db, account.id, date(2025, 3, 10), window_days=7)

        assert [m.id for m in candidates] == [early_edge.id, late_edge.id]

    @pytest.mark.asyncio
    async def test_same_day_ordered_by_creation(self, db):
        account = await BankAccountFactory.create_async(db)
        first = await MovementFactory.create_async(db, iban_id=account.id)
        second = await MovementFactory.create_async(db, iban_id=account.id)

        candidates = await find_candidate_movements(db, account.id, date(2025, 3, 10), window_days=7)

        assert [m.id for m in candidates] == [first.id, second.id]


class TestMatchTransaction:
    @pytest.mark.asyncio
    async def test_high_score_marks_movement_matched(self, db):
        """GIVEN: A movement agreeing on amount, date, direction and text
        WHEN: Matching the stored transaction
        THEN: Both rows are linked and the movement is verified"""
        account = await BankAccountFactory.create_async(db)
        movement = await MovementFactory.create_async(db, iban_id=account.id, notes="ACME consulting")
        txn = await BankTransactionFactory.create_async(db, iban_id=account.id, description="ACME consulting")

        outcome = await match_transaction(db, txn, CONFIG, NOW)
        await db.commit()

        assert outcome is not None
        assert outcome.movement_id == movement.id
        assert outcome.score == Decimal("100")
        assert outcome.status == VerificationStatus.MATCHED

        await db.refresh(movement)
        await db.refresh(txn)
        assert movement.verification_status == VerificationStatus.MATCHED
        assert movement.is_verified is True
        assert movement.bank_transaction_id == txn.id
        assert movement.match_score == Decimal("100.00")
        assert movement.last_verification_date is not None
        assert txn.is_matched is True
        assert txn.movement_id == movement.id
        assert txn.matched_at is not None

    @pytest.mark.asyncio
    async def test_review_threshold_marks_partial_match(self, db):
        """GIVEN: Exact amount two days apart, same direction, no shared text (score 70)
        WHEN: Matching
        THEN: The movement is partially matched and stays unverified"""
        account = await BankAccountFactory.create_async(db)
        movement = await MovementFactory.create_async(db, iban_id=account.id, flow_date=date(2025, 3, 12))
        txn = await BankTransactionFactory.create_async(db, iban_id=account.id)

        outcome = await match_transaction(db, txn, CONFIG, NOW)
        await db.commit()

        assert outcome is not None
        assert outcome.score == Decimal("70")
        assert outcome.status == VerificationStatus.PARTIALLY_MATCHED
        await db.refresh(movement)
        assert movement.verification_status == VerificationStatus.PARTIALLY_MATCHED
        assert movement.is_verified is False

    @pytest.mark.asyncio
    async def test_below_threshold_leaves_rows_untouched(self, db):
        account = await BankAccountFactory.create_async(db)
        movement = await MovementFactory.create_async(db, iban_id=account.id, amount=Decimal("300.00"))
        txn = await BankTransactionFactory.create_async(db, iban_id=account.id)

        outcome = await match_transaction(db, txn, CONFIG, NOW)
        await db.commit()

        assert outcome is None
        await db.refresh(movement)
        await db.refresh(txn)
        assert movement.verification_status == VerificationStatus.UNVERIFIED
        assert txn.is_matched is False

    @pytest.mark.asyncio
    async def test_direction_mismatch_never_fully_matches(self, db):
        account = await BankAccountFactory.create_async(db)
        await MovementFactory.create_async(
            db, iban_id=account.id, type=MovementType.EXPENSE, notes="ACME consulting"
        )
        txn = await BankTransactionFactory.create_async(db, iban_id=account.id, description="ACME consulting")

        outcome = await match_transaction(db, txn, CONFIG, NOW)

        assert outcome is not None
        assert outcome.status == VerificationStatus.PARTIALLY_MATCHED


class TestClaimMatch:
    @pytest.mark.asyncio
    async def test_movement_cannot_be_claimed_twice(self, db):
        """GIVEN: A movement already claimed by one transaction
        WHEN: A second transaction tries to claim it
        THEN: The claim fails and the second transaction is released unmatched"""
        account = await BankAccountFactory.create_async(db)
        movement = await MovementFactory.create_async(db, iban_id=account.id)
        first = await BankTransactionFactory.create_async(db, iban_id=account.id)
        second = await BankTransactionFactory.create_async(db, iban_id=account.id)
        result = MatchResult(movement=movement, score=Decimal("95"), breakdown={})

        assert await claim_match(db, first, result, VerificationStatus.MATCHED, NOW) is True
        assert await claim_match(db, second, result, VerificationStatus.MATCHED, NOW) is False
        await db.commit()

        await db.refresh(movement)
        await db.refresh(second)
        assert movement.bank_transaction_id == first.id
        assert second.is_matched is False
        assert second.movement_id is None
        assert second.matched_at is None

    @pytest.mark.asyncio
    async def test_transaction_cannot_be_claimed_twice(self, db):
        account = await BankAccountFactory.create_async(db)
        movement = await MovementFactory.create_async(db, iban_id=account.id)
        other = await MovementFactory.create_async(db, iban_id=account.id)
        txn = await BankTransactionFactory.create_async(db, iban_id=account.id)

        claimed = await claim_match(
            db, txn, MatchResult(movement, Decimal("95"), {}), VerificationStatus.MATCHED, NOW
        )
        again = await claim_match(
            db, txn, MatchResult(other, Decimal("95"), {}), VerificationStatus.MATCHED, NOW
        )
        await db.commit()

        assert claimed is True
        assert again is False
        await db.refresh(other)
        assert other.verification_status == VerificationStatus.UNVERIFIED
