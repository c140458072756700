from __future__ import annotations

from dataclasses import dataclass
import logging

from ..errors import ErrorCode
from ..messages import CreditMoneyResult, SpendMoneyResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    kind: str
    amount: int
    reason: str
    balance: int


class EconomyLedger:
    """
    Sole writer of ``state.money``.

    Only successful operations are recorded, so the balance always equals the
    starting money plus credits minus spends in ``history``.
    """

    def __init__(self, state) -> None:
        self.state = state
        self.starting_money = int(state.money)
        self.history: list[LedgerEntry] = []

    @property
    def money(self) -> int:
        return int(self.state.money)

    def can_afford(self, amount: int) -> bool:
        return 0 <= amount <= self.state.money

    def spend(self, amount: int, reason: str = "Unknown") -> SpendMoneyResult:
        current = self.state.money
        if amount < 0:
            return SpendMoneyResult.failed(
                ErrorCode.INSUFFICIENT_FUNDS,
                detail=f"Amount cannot be negative: {amount}",
                remaining_money=current,
            )
        if amount > current:
            return SpendMoneyResult.failed(
                ErrorCode.INSUFFICIENT_FUNDS,
                detail=f"Insufficient funds. Need: {amount}, Have: {current}",
                remaining_money=current,
            )
        self.state.money = current - amount
        self.history.append(LedgerEntry("spend", amount, reason, self.state.money))
        logger.debug("spend amount=%s reason=%s balance=%s", amount, reason, self.state.money)
        return SpendMoneyResult.successful(self.state.money)

    def credit(self, amount: int, reason: str = "Unknown") -> CreditMoneyResult:
        if amount < 0:
            return CreditMoneyResult.failed(
                ErrorCode.INVALID_AMOUNT,
                detail=f"Credit amount cannot be negative: {amount}",
                balance=self.state.money,
            )
        self.state.money += amount
        self.history.append(LedgerEntry("credit", amount, reason, self.state.money))
        logger.debug("credit amount=%s reason=%s balance=%s", amount, reason, self.state.money)
        return CreditMoneyResult(success=True, balance=self.state.money)

    def reset(self, money: int) -> None:
        self.state.money = int(money)
        self.starting_money = int(money)
        self.history.clear()
