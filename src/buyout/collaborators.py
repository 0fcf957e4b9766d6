"""External collaborators consumed through narrow interfaces.

The custody vault reports a signed funding delta for an item at
redemption (interest earned is positive, fees owed negative). The royalty
calculator reports a deduction on the sale amount. A price oracle reports
``(price, valid)`` or raises OracleUnavailable.

The Null* classes are the defaults when no collaborator is wired.
"""

from __future__ import annotations

from typing import Tuple

from buyout.errors import OracleUnavailable


class CustodyVault:
    """Base custody vault: holds funds in ``account_id``."""

    def __init__(self, account_id: str = "custody:vault") -> None:
        self.account_id = account_id

    def settle(self, item_id: int) -> int:
        raise NotImplementedError


class NullCustodyVault(CustodyVault):
    def settle(self, item_id: int) -> int:
        return 0


class RoyaltyCalculator:
    def __init__(self, recipient: str = "royalty:recipient") -> None:
        self.recipient = recipient

    def royalty_for(self, item_id: int, sale_amount: int) -> int:
        raise NotImplementedError


class NullRoyaltyCalculator(RoyaltyCalculator):
    def royalty_for(self, item_id: int, sale_amount: int) -> int:
        return 0


class PriceOracle:
    def read_price(self) -> Tuple[int, bool]:
        raise NotImplementedError


class FixedCustodyVault(CustodyVault):
    """Reports a preset delta per item; used by scripts and tests."""

    def __init__(self, deltas: dict, account_id: str = "custody:vault") -> None:
        super().__init__(account_id)
        self._deltas = dict(deltas)

    def settle(self, item_id: int) -> int:
        return self._deltas.pop(item_id, 0)


class PercentageRoyalty(RoyaltyCalculator):
    """Royalty as basis points of the sale amount."""

    def __init__(self, basis_points: int, recipient: str = "royalty:recipient") -> None:
        super().__init__(recipient)
        self.basis_points = basis_points

    def royalty_for(self, item_id: int, sale_amount: int) -> int:
        return sale_amount * self.basis_points // 10_000


class StaticPriceOracle(PriceOracle):
    """Oracle returning a settable price; ``None`` means unavailable."""

    def __init__(self, price: int | None = None) -> None:
        self.price = price

    def read_price(self) -> Tuple[int, bool]:
        if self.price is None:
            raise OracleUnavailable("no price available")
        return self.price, self.price > 0
