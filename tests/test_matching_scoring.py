"""Tests for matching score calculation and classification.

GIVEN: A movement and a bank transaction
WHEN: Scoring and classifying the pair
THEN: Weights, tiers, thresholds and the 100 cap behave as documented
"""

from datetime import date, timedelta
from decimal import Decimal
from itertools import product

import pytest

from bankrecon.models import BankTransaction, Movement, MovementType, VerificationStatus
from bankrecon.services.matching import (
    MatchingConfig,
    calculate_match_score,
    classify_score,
    find_best_match,
    load_matching_config,
    score_amount,
    score_date,
    score_direction,
    score_text,
    shared_tokens,
)

DAY = date(2025, 3, 10)
CONFIG = MatchingConfig()


def make_movement(**overrides) -> Movement:
    values = {
        "type": MovementType.INCOME,
        "amount": Decimal("500.00"),
        "flow_date": DAY,
        "notes": None,
        "invoice_number": None,
        "document_number": None,
    }
    values.update(overrides)
    return Movement(**values)


def make_txn(**overrides) -> BankTransaction:
    values = {
        "external_transaction_id": "TX-1",
        "booking_date": DAY,
        "amount": Decimal("500.00"),
        "description": None,
        "remittance_info": None,
    }
    values.update(overrides)
    return BankTransaction(**values)


class TestScoreComponents:
    @pytest.mark.parametrize(
        ("txn_amount", "expected"),
        [
            ("1000.00", "40"),
            ("-1000.00", "40"),
            ("1009.99", "35"),
            ("1010.00", "35"),
            ("990.00", "35"),
            ("1010.01", "20"),
            ("1050.00", "20"),
            ("1050.01", "0"),
            ("10.00", "0"),
        ],
    )
    def test_amount_tiers_relative_to_movement(self, txn_amount, expected):
        assert score_amount(Decimal("1000.00"), Decimal(txn_amount)) == Decimal(expected)

    @pytest.mark.parametrize(
        ("offset_days", "expected"),
        [(0, "30"), (1, "25"), (-1, "25"), (2, "15"), (3, "15"), (4, "5"), (-7, "5"), (8, "0")],
    )
    def test_date_tiers(self, offset_days, expected):
        assert score_date(DAY, DAY + timedelta(days=offset_days)) == Decimal(expected)

    def test_direction_agreement(self):
        assert score_direction(MovementType.INCOME, Decimal("10")) == Decimal("15")
        assert score_direction(MovementType.EXPENSE, Decimal("-10")) == Decimal("15")
        assert score_direction(MovementType.INCOME, Decimal("-10")) == Decimal("0")
        assert score_direction(MovementType.EXPENSE, Decimal("10")) == Decimal("0")

    def test_zero_amount_counts_as_outgoing(self):
        assert score_direction(MovementType.EXPENSE, Decimal("0")) == Decimal("15")
        assert score_direction(MovementType.INCOME, Decimal("0")) == Decimal("0")

    def test_text_two_shared_words_scores_full(self):
        assert score_text("ACME consulting services", "Bonifico ACME Consulting srl") == Decimal("15")

    def test_text_one_shared_word_scores_half(self):
        assert score_text("Rent", "RENT March") == Decimal("7.5")

    def test_text_ignores_short_words(self):
        # "fee" and "srl" are too short to count
        assert score_text("fee srl", "fee srl payment") == Decimal("0")

    def test_text_matches_by_containment(self):
        assert shared_tokens("consulting", "consultingfee") == ["consulting"]
        assert shared_tokens("consultingfee", "consulting") == ["consultingfee"]

    def test_text_missing_side_scores_zero(self):
        assert score_text(None, "anything here") == Decimal("0")
        assert score_text("anything here", None) == Decimal("0")
        assert score_text("", "") == Decimal("0")


class TestCalculateMatchScore:
    def test_perfect_match_with_invoice_is_capped_at_100(self):
        """GIVEN: Equal amount, same day, same direction, shared words and invoice reference
        WHEN: Scoring
        THEN: 110 raw points are capped at 100 and classified as matched"""
        movement = make_movement(notes="Payment invoice ACME consulting", invoice_number="INV-2025-001")
        txn = make_txn(description="ACME consulting payment March", remittance_info="INV-2025-001 ACME")

        score, breakdown = calculate_match_score(movement, txn, CONFIG)

        assert score == Decimal("100")
        assert breakdown == {
            "amount": 40.0,
            "date": 30.0,
            "direction": 15.0,
            "text": 15.0,
            "invoice_bonus": 10.0,
        }
        assert classify_score(score, CONFIG) == VerificationStatus.MATCHED

    def test_direction_mismatch_caps_score_at_85(self):
        """GIVEN: Income movement of 500.00 and an outgoing -500.00 transaction on the same day
        WHEN: Scoring without an invoice reference
        THEN: The score cannot exceed 85, so the movement is never fully matched"""
        movement = make_movement(notes="ACME consulting")
        txn = make_txn(amount=Decimal("-500.00"), description="ACME consulting")

        score, breakdown = calculate_match_score(movement, txn, CONFIG)

        assert breakdown["direction"] == 0.0
        assert score == Decimal("85")
        assert classify_score(score, CONFIG) == VerificationStatus.PARTIALLY_MATCHED

    def test_document_number_used_when_invoice_missing(self):
        movement = make_movement(document_number="DOC-77")
        txn = make_txn(remittance_info="Saldo fattura DOC-77")

        _, breakdown = calculate_match_score(movement, txn, CONFIG)

        assert breakdown["invoice_bonus"] == 10.0

    def test_invoice_bonus_requires_literal_substring(self):
        movement = make_movement(invoice_number="INV-9")
        txn = make_txn(remittance_info="invoice inv 9")

        _, breakdown = calculate_match_score(movement, txn, CONFIG)

        assert breakdown["invoice_bonus"] == 0.0

    def test_score_bounds_hold_for_all_combinations(self):
        amounts = [Decimal("0.01"), Decimal("499.99"), Decimal("500.00"), Decimal("-500.00"), Decimal("99999.00")]
        offsets = [0, 1, 3, 7, 30]
        notes = [None, "ACME consulting invoice", "x"]
        for amount, offset, note in product(amounts, offsets, notes):
            movement = make_movement(notes=note, invoice_number="INV-1")
            txn = make_txn(
                amount=amount,
                booking_date=DAY + timedelta(days=offset),
                description="ACME consulting invoice INV-1",
                remittance_info="INV-1",
            )
            score, _ = calculate_match_score(movement, txn, CONFIG)
            assert Decimal("0") <= score <= Decimal("100")

    def test_scoring_is_deterministic(self):
        movement = make_movement(notes="Monthly rent office", invoice_number="R-3")
        txn = make_txn(amount=Decimal("495.00"), booking_date=DAY + timedelta(days=2), description="Rent office")

        first = calculate_match_score(movement, txn, CONFIG)
        second = calculate_match_score(movement, txn, CONFIG)

        assert first == second


class TestClassifyScore:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            ("100", VerificationStatus.MATCHED),
            ("90", VerificationStatus.MATCHED),
            ("89.99", VerificationStatus.PARTIALLY_MATCHED),
            ("70", VerificationStatus.PARTIALLY_MATCHED),
            ("69.99", None),
            ("0", None),
        ],
    )
    def test_thresholds(self, score, expected):
        assert classify_score(Decimal(score), CONFIG) == expected

    def test_custom_thresholds(self):
        config = MatchingConfig(matched_threshold=Decimal("95"), review_threshold=Decimal("80"))
        assert classify_score(Decimal("90"), config) == VerificationStatus.PARTIALLY_MATCHED
        assert classify_score(Decimal("79"), config) is None


class TestFindBestMatch:
    def test_highest_score_wins(self):
        weak = make_movement(amount=Decimal("300.00"))
        strong = make_movement(notes="ACME consulting")
        txn = make_txn(description="ACME consulting")

        result = find_best_match(txn, [weak, strong], CONFIG)

        assert result is not None
        assert result.movement is strong

    def test_ties_go_to_first_candidate(self):
        first = make_movement()
        second = make_movement()
        txn = make_txn()

        result = find_best_match(txn, [first, second], CONFIG)

        assert result is not None
        assert result.movement is first

    def test_no_candidates(self):
        assert find_best_match(make_txn(), [], CONFIG) is None


class TestMatchingConfig:
    def test_repository_defaults(self):
        config = load_matching_config(force_reload=True)

        assert config.matched_threshold == Decimal("90")
        assert config.review_threshold == Decimal("70")
        assert config.window_days == 7

    def test_env_overrides_thresholds(self, monkeypatch):
        monkeypatch.setenv("MATCHING_MATCHED_THRESHOLD", "95")
        monkeypatch.setenv("MATCHING_REVIEW_THRESHOLD", "75.5")

        config = load_matching_config(force_reload=True)

        assert config.matched_threshold == Decimal("95")
        assert config.review_threshold == Decimal("75.5")

    def test_config_is_cached(self):
        assert load_matching_config(force_reload=True) is load_matching_config()
