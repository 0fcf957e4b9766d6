"""Fraction ledger — one independent balance store per epoch.

Each holder's balance is tagged: liquid, locked by a vote, or locked by a
bid. Locking moves balance out of the liquid tag and into the
contract-held total, which is the only mutual-exclusion mechanism between
voting and bidding with the same units.

Invariants:
    total_supply == Σ liquid + contract_held
    contract_held == Σ (locked_by_vote + locked_by_bid)
    liquid_supply == total_supply − contract_held

Every debit of a holder's liquid balance (transfer out, lock, burn) is
reported to the optional transfer hook so governance can cap committed
vote weight at what the holder still owns.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from buyout.errors import (
    InsufficientBalance,
    InsufficientLockedBalance,
    InvalidAmount,
)


class LockKind(str, enum.Enum):
    VOTE = "vote"
    BID = "bid"


@dataclass
class HolderBalance:
    liquid: int = 0
    locked_by_vote: int = 0
    locked_by_bid: int = 0

    @property
    def locked(self) -> int:
        return self.locked_by_vote + self.locked_by_bid

    @property
    def total(self) -> int:
        return self.liquid + self.locked

    def locked_as(self, kind: LockKind) -> int:
        return self.locked_by_vote if kind == LockKind.VOTE else self.locked_by_bid


TransferHook = Callable[["FractionLedger", str, int], None]


class FractionLedger:
    """Fungible fraction balances for a single epoch.

    Usage:
        ledger = FractionLedger(epoch=0)
        ledger.mint("seller", 5000 * 10**18)
        ledger.transfer("seller", "alice", 10**18)
        ledger.lock("alice", 10**18, LockKind.VOTE)
    """

    def __init__(self, epoch: int, transfer_hook: Optional[TransferHook] = None) -> None:
        self.epoch = epoch
        self._holders: Dict[str, HolderBalance] = {}
        self._total_supply = 0
        self._contract_held = 0
        self._transfer_hook = transfer_hook

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_supply(self) -> int:
        return self._total_supply

    @property
    def contract_held(self) -> int:
        return self._contract_held

    @property
    def liquid_supply(self) -> int:
        return self._total_supply - self._contract_held

    def balance_of(self, holder: str) -> int:
        """Liquid (spendable) balance."""
        entry = self._holders.get(holder)
        return entry.liquid if entry else 0

    def locked_balance_of(self, holder: str, kind: Optional[LockKind] = None) -> int:
        entry = self._holders.get(holder)
        if entry is None:
            return 0
        if kind is None:
            return entry.locked
        return entry.locked_as(kind)

    def holding(self, holder: str) -> HolderBalance:
        entry = self._holders.get(holder)
        if entry is None:
            return HolderBalance()
        return HolderBalance(entry.liquid, entry.locked_by_vote, entry.locked_by_bid)

    def holders(self) -> List[str]:
        return [h for h, entry in self._holders.items() if entry.total]

    def require_balance(self, holder: str, amount: int) -> None:
        balance = self.balance_of(holder)
        if balance < amount:
            raise InsufficientBalance(holder, balance, amount)

    def check_invariants(self) -> List[str]:
        """Return a list of violated invariants. Empty list means healthy."""
        errors: List[str] = []
        liquid = sum(e.liquid for e in self._holders.values())
        locked = sum(e.locked for e in self._holders.values())
        if locked != self._contract_held:
            errors.append(
                f"epoch {self.epoch}: contract_held {self._contract_held} != Σ locked {locked}"
            )
        if liquid + self._contract_held != self._total_supply:
            errors.append(
                f"epoch {self.epoch}: total_supply {self._total_supply} != "
                f"Σ liquid {liquid} + contract_held {self._contract_held}"
            )
        negative = [h for h, e in self._holders.items()
                    if min(e.liquid, e.locked_by_vote, e.locked_by_bid) < 0]
        if negative:
            errors.append(f"epoch {self.epoch}: negative balances for {sorted(negative)}")
        return errors

    # ------------------------------------------------------------------
    # Supply
    # ------------------------------------------------------------------

    def mint(self, holder: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(amount)
        self._entry(holder).liquid += amount
        self._total_supply += amount

    def burn(self, holder: str, amount: int) -> None:
        """Burn liquid balance."""
        self._debit(holder, amount)
        self._total_supply -= amount
        self._notify(holder, amount)

    def burn_locked(self, holder: str, amount: int, kind: LockKind) -> None:
        """Burn balance the contract holds on the holder's behalf."""
        self._unlock_checked(holder, amount, kind)
        self._contract_held -= amount
        self._total_supply -= amount

    # ------------------------------------------------------------------
    # Movement
    # ------------------------------------------------------------------

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._debit(sender, amount)
        self._entry(recipient).liquid += amount
        self._notify(sender, amount)

    def lock(self, holder: str, amount: int, kind: LockKind) -> None:
        """Move liquid balance into contract custody."""
        self._debit(holder, amount)
        entry = self._entry(holder)
        if kind == LockKind.VOTE:
            entry.locked_by_vote += amount
        else:
            entry.locked_by_bid += amount
        self._contract_held += amount
        self._notify(holder, amount)

    def unlock(self, holder: str, amount: int, kind: LockKind) -> None:
        """Return locked balance to the holder's liquid balance."""
        self._unlock_checked(holder, amount, kind)
        self._entry(holder).liquid += amount
        self._contract_held -= amount

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _entry(self, holder: str) -> HolderBalance:
        entry = self._holders.get(holder)
        if entry is None:
            entry = HolderBalance()
            self._holders[holder] = entry
        return entry

    def _debit(self, holder: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(amount)
        self.require_balance(holder, amount)
        self._holders[holder].liquid -= amount

    def _unlock_checked(self, holder: str, amount: int, kind: LockKind) -> None:
        if amount <= 0:
            raise InvalidAmount(amount)
        entry = self._holders.get(holder)
        locked = entry.locked_as(kind) if entry else 0
        if locked < amount:
            raise InsufficientLockedBalance(holder, kind.value, locked, amount)
        if kind == LockKind.VOTE:
            entry.locked_by_vote -= amount
        else:
            entry.locked_by_bid -= amount

    def _notify(self, holder: str, amount: int) -> None:
        if self._transfer_hook is not None:
            self._transfer_hook(self, holder, amount)
