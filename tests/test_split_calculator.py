"""Tests for the transaction split calculator."""

import pytest

from barter_pos.errors import InvalidArgumentError
from barter_pos.utils.split_calculator import (
    calculate_custom_split,
    calculate_split_with_limits,
    calculate_transaction_split,
    round2,
)


class TestRound2:
    """Test half-up cent rounding."""

    def test_rounds_half_up(self):
        assert round2(2.675) == 2.68
        assert round2(0.125) == 0.13

    def test_keeps_exact_cents(self):
        assert round2(10.5) == 10.5


class TestTransactionSplit:
    """Test the percentage-based split."""

    def test_thirty_percent_of_hundred(self):
        """$100 at 30% barter is $30 barter and $70 card."""
        split = calculate_transaction_split(100.0, 30)
        assert split.barter_amount == 30.00
        assert split.card_amount == 70.00
        assert split.cash_amount == 0.0
        assert split.total_amount == 100.0
        assert split.barter_percentage == 30

    @pytest.mark.parametrize(
        "total,percentage",
        [(0.0, 50), (0.01, 33.33), (19.99, 12.5), (123.45, 100), (999.99, 0), (47.13, 66.67)],
    )
    def test_parts_add_up_to_total(self, total, percentage):
        split = calculate_transaction_split(total, percentage)
        assert abs(split.barter_amount + split.card_amount - total) <= 0.01
        assert split.barter_amount <= total

    def test_tip_is_part_of_total(self):
        split = calculate_transaction_split(50.0, 20, tip_amount=5.0)
        assert split.barter_amount == 10.0
        assert split.card_amount == 40.0

    def test_negative_total_rejected(self):
        with pytest.raises(InvalidArgumentError):
            calculate_transaction_split(-1.0, 25)

    @pytest.mark.parametrize("percentage", [-0.01, 100.01, 150])
    def test_percentage_out_of_range_rejected(self, percentage):
        with pytest.raises(InvalidArgumentError):
            calculate_transaction_split(10.0, percentage)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            calculate_transaction_split(10.0, 101)


class TestCustomSplit:
    """Test caller-chosen barter and cash amounts."""

    def test_remainder_goes_to_card(self):
        split = calculate_custom_split(100.0, 20.0, 30.0)
        assert split.barter_amount == 20.0
        assert split.cash_amount == 30.0
        assert split.card_amount == 50.0
        assert split.barter_percentage == 20.0

    def test_barter_plus_cash_exceeding_total_rejected(self):
        with pytest.raises(InvalidArgumentError):
            calculate_custom_split(50.0, 30.0, 25.0)

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidArgumentError):
            calculate_custom_split(50.0, -1.0, 10.0)

    def test_zero_total_has_zero_percentage(self):
        split = calculate_custom_split(0.0, 0.0, 0.0)
        assert split.barter_percentage == 0.0


class TestSplitWithLimits:
    """Test the daily-limited split."""

    def test_under_limit_uses_requested_percentage(self):
        split = calculate_split_with_limits(100.0, 30, daily_barter_used=0.0, daily_barter_limit=500.0)
        assert split.barter_amount == 30.0
        assert split.barter_percentage == 30.0

    def test_clamped_to_remaining_limit(self):
        split = calculate_split_with_limits(100.0, 30, daily_barter_used=90.0, daily_barter_limit=100.0)
        assert split.barter_amount == 10.0
        assert split.card_amount == 90.0
        assert split.barter_percentage == 10.0

    def test_limit_already_exceeded_gives_zero_barter(self):
        split = calculate_split_with_limits(80.0, 50, daily_barter_used=120.0, daily_barter_limit=100.0)
        assert split.barter_amount == 0.0
        assert split.card_amount == 80.0
        assert split.barter_percentage == 0.0

    def test_sub_cent_usage_rounds_allowance_down(self):
        split = calculate_split_with_limits(100.0, 50, daily_barter_used=89.994, daily_barter_limit=100.0)
        assert split.barter_amount == 10.0
        assert split.card_amount == 90.0

    @pytest.mark.parametrize(
        "total,used,limit",
        [
            (100.0, 0.0, 5.0),
            (33.33, 12.5, 20.0),
            (250.0, 99.99, 100.0),
            (10.0, 0.0, 0.0),
            (100.0, 89.994, 100.0),
        ],
    )
    def test_never_exceeds_remaining_limit(self, total, used, limit):
        split = calculate_split_with_limits(total, 75, used, limit)
        assert split.barter_amount <= max(0.0, limit - used) + 1e-9
        assert abs(split.barter_amount + split.card_amount - total) <= 0.01

    def test_zero_total(self):
        split = calculate_split_with_limits(0.0, 50, 0.0, 100.0)
        assert split.barter_amount == 0.0
        assert split.barter_percentage == 0.0
