"""Exchange asset ledger — the currency bids are paid and claims settled in.

Amounts are integer base units. No floats in finance.
"""

from __future__ import annotations

from typing import Dict

from buyout.errors import InsufficientPayment, InvalidAmount


class PaymentToken:
    """In-memory fungible balance ledger for the exchange asset.

    Usage:
        token = PaymentToken()
        token.mint("alice", 10**18)
        token.transfer("alice", "protocol:escrow", 10**17)
    """

    def __init__(self, symbol: str = "EXCH") -> None:
        self.symbol = symbol
        self._balances: Dict[str, int] = {}
        self._total_supply = 0

    def mint(self, account: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(amount)
        self._balances[account] = self._balances.get(account, 0) + amount
        self._total_supply += amount

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` from sender to recipient. Zero is a no-op."""
        if amount < 0:
            raise InvalidAmount(amount)
        if amount == 0:
            return
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientPayment(sender, balance, amount)
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

    def require_balance(self, account: str, amount: int) -> None:
        """Raise InsufficientPayment unless ``account`` holds ``amount``."""
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientPayment(account, balance, amount)

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balances(self) -> Dict[str, int]:
        return {k: v for k, v in self._balances.items() if v}
