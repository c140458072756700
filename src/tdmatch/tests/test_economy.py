from __future__ import annotations

from types import SimpleNamespace

import pytest

from tdmatch.core.errors import ErrorCode, ValidationError
from tdmatch.core.messages import CreditMoneyCommand, GetGameStateQuery, SpendMoneyCommand
from tdmatch.core.rules.economy import EconomyLedger
from tdmatch.testing.builders import make_match


def _ledger(money: int) -> EconomyLedger:
    return EconomyLedger(SimpleNamespace(money=money))


def test_spend_within_balance():
    ledger = _ledger(500)
    result = ledger.spend(100, "tower")
    assert result.success
    assert result.remaining_money == 400
    assert ledger.money == 400


@pytest.mark.parametrize("amount", [501, -1])
def test_spend_rejected_leaves_balance(amount: int):
    ledger = _ledger(500)
    result = ledger.spend(amount)
    assert not result.success
    assert result.error_message == ErrorCode.INSUFFICIENT_FUNDS
    assert result.remaining_money == 500
    assert ledger.money == 500
    assert ledger.history == []


def test_spend_entire_balance():
    ledger = _ledger(50)
    assert ledger.spend(50).success
    assert ledger.money == 0
    assert not ledger.spend(1).success


def test_negative_credit_is_invalid_amount():
    ledger = _ledger(10)
    result = ledger.credit(-5)
    assert result.error_message == ErrorCode.INVALID_AMOUNT
    assert ledger.money == 10


def test_balance_equals_start_plus_history():
    ledger = _ledger(300)
    ops = [("spend", 120), ("credit", 40), ("spend", 500), ("credit", -3), ("spend", 220), ("credit", 15)]
    for kind, amount in ops:
        getattr(ledger, kind)(amount)
        assert ledger.money >= 0

    credits = sum(e.amount for e in ledger.history if e.kind == "credit")
    spends = sum(e.amount for e in ledger.history if e.kind == "spend")
    assert ledger.money == ledger.starting_money + credits - spends
    assert ledger.history[-1].balance == ledger.money


def test_can_afford():
    ledger = _ledger(100)
    assert ledger.can_afford(100)
    assert not ledger.can_afford(101)
    assert not ledger.can_afford(-1)


def test_money_commands_through_match():
    match = make_match(money=200)
    assert match.dispatch(SpendMoneyCommand(150, "upgrade")).remaining_money == 50
    assert match.dispatch(CreditMoneyCommand(25, "bounty")).balance == 75
    assert match.dispatch(GetGameStateQuery()).money == 75


def test_spend_command_validates_type():
    with pytest.raises(ValidationError):
        SpendMoneyCommand(1.5)
    with pytest.raises(ValidationError):
        SpendMoneyCommand(True)
