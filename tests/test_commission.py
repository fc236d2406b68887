from decimal import Decimal

import pytest

from fastcomm.services.commission import (
    Participant,
    calculate_commissions,
    fast_commission,
    parse_amount,
    share_total,
    total_commission,
    total_payout,
    validate_shares,
)


def test_two_consultant_split():
    participants = [Participant("Alice", "C1", 60), Participant("Bob", "C2", 40)]

    result = calculate_commissions("500,000", "2", participants)

    assert total_commission("500,000", "2") == Decimal("10000")
    assert [p.payout for p in result] == ["6000.00", "4000.00"]


def test_payouts_round_half_up():
    result = calculate_commissions("1000", "1", [Participant("A", "", 0.05)])

    # 10 x 0.05% = 0.005
    assert result[0].payout == "0.01"


def test_inputs_are_not_mutated():
    participants = [Participant("Alice", "C1", 100)]

    calculate_commissions("100000", "3", participants)

    assert participants[0].payout is None


@pytest.mark.parametrize(
    "shares, valid",
    [
        ([50, 50], True),
        ([99.99], True),
        ([100.01], True),
        ([99.98], False),
        ([100.02], False),
        ([33.33, 33.33, 33.34], True),
        ([60, 30], False),
    ],
)
def test_share_validation_tolerance(shares, valid):
    participants = [Participant(f"P{i}", "", s) for i, s in enumerate(shares)]

    assert validate_shares(participants) is valid


def test_empty_slots_do_not_count_towards_total():
    participants = [Participant("A", "", 100), Participant("", "", 50)]

    assert share_total(participants) == Decimal("100")
    assert validate_shares(participants)


def test_no_participants_is_invalid():
    assert not validate_shares([])


def test_payout_sum_stays_within_rounding_of_total():
    participants = [
        Participant("A", "", 33.33),
        Participant("B", "", 33.33),
        Participant("C", "", 33.34),
    ]

    result = calculate_commissions("777,777", "2.5", participants)

    total = total_commission("777,777", "2.5")
    assert abs(total_payout(result) - total) <= Decimal("0.01") * len(result)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1,200,000", Decimal("1200000")),
        ("  42.5 ", Decimal("42.5")),
        ("", Decimal("0")),
        (None, Decimal("0")),
        ("abc", Decimal("0")),
        ("nan", Decimal("0")),
        ("inf", Decimal("0")),
    ],
)
def test_parse_amount_is_lenient(raw, expected):
    assert parse_amount(raw) == expected


def test_junk_price_yields_zero_payouts():
    result = calculate_commissions("n/a", "2", [Participant("A", "", 100)])

    assert result[0].payout == "0.00"


def test_fast_commission():
    assert fast_commission(Decimal("10000"), 50) == Decimal("5000.00")
    assert fast_commission("1,234.56", 0) == Decimal("0.00")
