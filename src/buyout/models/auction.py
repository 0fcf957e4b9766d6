"""Buyout auction models — parameters, vote tallies, and the auction record.

Percentages are basis points: HUNDRED_PERCENT == 10_000.

Auction state machine (per item, per epoch):
    NOT_STARTED → ONGOING → REDEEMED
    NOT_STARTED → RESERVED → REDEEMED
    ONGOING → RESERVED
RESERVED means a single bid covers the whole item; no further bids.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

HUNDRED_PERCENT = 10_000


class AuctionState(str, enum.Enum):
    NOT_STARTED = "not_started"
    ONGOING = "ongoing"
    RESERVED = "reserved"
    REDEEMED = "redeemed"


AUCTION_TRANSITIONS: Dict[AuctionState, frozenset] = {
    AuctionState.NOT_STARTED: frozenset({AuctionState.ONGOING, AuctionState.RESERVED}),
    AuctionState.ONGOING: frozenset({AuctionState.RESERVED, AuctionState.REDEEMED}),
    AuctionState.RESERVED: frozenset({AuctionState.REDEEMED}),
    AuctionState.REDEEMED: frozenset(),
}


@dataclass
class AuctionParameters:
    """Buyout settings for one epoch. Durations are in seconds."""
    exit_price: int
    duration: int = 0
    unlock_threshold: int = 0
    top_bid_lock_time: int = 0

    def as_dict(self) -> dict:
        return {
            "exit_price": self.exit_price,
            "duration": self.duration,
            "unlock_threshold": self.unlock_threshold,
            "top_bid_lock_time": self.top_bid_lock_time,
        }


@dataclass(frozen=True)
class VaultParameters:
    """Custody vault settings recorded alongside the auction parameters."""
    partial_auction_threshold: int = 0
    partial_auction_duration: int = 0
    liquidation_threshold: int = 0
    new_fractions_per_auction: int = 0


@dataclass
class AuctionVotes:
    """Fractions locked as votes to start the auction."""
    total: int = 0
    individual: Dict[str, int] = field(default_factory=dict)

    def of(self, voter: str) -> int:
        return self.individual.get(voter, 0)

    def add(self, voter: str, amount: int) -> None:
        self.individual[voter] = self.of(voter) + amount
        self.total += amount

    def remove(self, voter: str, amount: int) -> None:
        remaining = self.of(voter) - amount
        if remaining:
            self.individual[voter] = remaining
        else:
            self.individual.pop(voter, None)
        self.total -= amount


@dataclass
class Auction:
    """Auction record for one item in one epoch.

    Mutable — bids, votes and redemption update it in place.
    After redemption ``reserved_proceeds`` holds the voters' share of the
    sale, paid out as voters claim their locked votes.
    """
    item_id: int
    epoch: int
    total_fractions: int
    state: AuctionState = AuctionState.NOT_STARTED
    timer: Optional[datetime] = None
    max_bid: int = 0
    max_bidder: Optional[str] = None
    locked_fractions: int = 0
    locked_bid_amount: int = 0
    votes: AuctionVotes = field(default_factory=AuctionVotes)
    reserved_proceeds: int = 0
    started_utc: Optional[datetime] = None
    redeemed_utc: Optional[datetime] = None

    @property
    def started(self) -> bool:
        return self.state != AuctionState.NOT_STARTED

    def transition_to(self, new_state: AuctionState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = AUCTION_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid auction transition: {self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed)}"
            )
        self.state = new_state

    def clear_leader(self) -> None:
        self.max_bid = 0
        self.max_bidder = None
        self.locked_fractions = 0
        self.locked_bid_amount = 0
        self.timer = None
