"""Votes to start a buyout auction.

A holder locks fractions as a vote that the item should be sold, whatever
the price. Once bid fractions plus votes reach the epoch's unlock
threshold the auction starts even if the leading bid is below the exit
price. Voting needs a leading bid to start anything, so a vote on an item
without one is rejected.

Votes stay locked until the auction is redeemed; outbidding never releases
them. After redemption they are paid out through the claim engine.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from buyout.auction.engine import BuyoutAuctionEngine
from buyout.errors import (
    AuctionOngoing,
    AuctionReserved,
    InvalidAmount,
    MaxBidderCannotVote,
    NoBids,
    NoFractionsAvailable,
    NotEnoughLockedVotes,
)
from buyout.ledger.fraction_ledger import LockKind
from buyout.models.auction import Auction, AuctionState
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


class VotingSubsystem:
    """Locks and releases votes on the current auction of an item.

    Usage:
        voting = VotingSubsystem(state, engine)
        voting.vote_to_start_auction("bob", item_id=1, amount=10**21, now=t0)
    """

    def __init__(self, state: ProtocolState, engine: BuyoutAuctionEngine) -> None:
        self._state = state
        self._engine = engine

    def vote_to_start_auction(
        self,
        voter: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> int:
        """Lock up to ``amount`` fractions as votes. Returns the amount locked.

        The amount is clamped to what is still unlocked of the item's share.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if amount <= 0:
            raise InvalidAmount(amount)

        epoch = self._engine.live_epoch_for(item_id)
        auction = self._engine.existing_auction(item_id, epoch)
        if auction is None or auction.max_bidder is None:
            raise NoBids(item_id)
        self._require_not_started(auction)
        if voter == auction.max_bidder:
            raise MaxBidderCannotVote(item_id)

        available = auction.total_fractions - auction.locked_fractions - auction.votes.total
        if available <= 0:
            raise NoFractionsAvailable(item_id)
        amount = min(amount, available)
        epoch.ledger.require_balance(voter, amount)

        epoch.ledger.lock(voter, amount, LockKind.VOTE)
        auction.votes.add(voter, amount)
        logger.debug(
            "Vote on item %d by %s: %d (total %d)",
            item_id, voter, amount, auction.votes.total,
        )
        self._engine.start_if_quorum(auction, epoch, now)
        return amount

    def remove_vote_to_start_auction(
        self,
        voter: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> int:
        """Release ``amount`` of the voter's locked votes before the auction starts.

        Returns the voter's remaining votes.
        """
        if amount <= 0:
            raise InvalidAmount(amount)
        epoch = self._engine.live_epoch_for(item_id)
        auction = self._engine.existing_auction(item_id, epoch)
        if auction is None:
            raise NotEnoughLockedVotes(item_id, amount, 0)
        self._require_not_started(auction)
        if voter == auction.max_bidder:
            raise MaxBidderCannotVote(item_id)
        locked = auction.votes.of(voter)
        if amount > locked:
            raise NotEnoughLockedVotes(item_id, amount, locked)

        epoch.ledger.unlock(voter, amount, LockKind.VOTE)
        auction.votes.remove(voter, amount)
        logger.debug("Vote on item %d reduced by %s: %d", item_id, voter, amount)
        return auction.votes.of(voter)

    def individual_votes(self, item_id: int, voter: str) -> int:
        auction = self._current(item_id)
        return auction.votes.of(voter) if auction else 0

    def total_votes(self, item_id: int) -> int:
        auction = self._current(item_id)
        return auction.votes.total if auction else 0

    def _current(self, item_id: int) -> Optional[Auction]:
        epoch = self._engine.live_epoch_for(item_id)
        return self._engine.existing_auction(item_id, epoch)

    @staticmethod
    def _require_not_started(auction: Auction) -> None:
        if auction.state == AuctionState.ONGOING:
            raise AuctionOngoing(auction.item_id, auction.timer)
        if auction.state == AuctionState.RESERVED:
            raise AuctionReserved(auction.item_id)
