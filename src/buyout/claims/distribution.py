"""Claim/distribution engine — pays fraction holders out of epoch proceeds.

A claim burns liquid fractions of one epoch and pays

    amount × epoch.proceeds // epoch.redeemable_supply

from that epoch's pool only. Every redemption adds the sold item's holder
share to both terms: the net proceeds left after the voters' part, and the
fractions still outstanding for that item. Every claim takes its payout and
its amount back out. Fractions of items that are still live never enter the
divisor, so claims interleaved with redemptions in a multi-item epoch all
get the per-share price of what has been sold.

Each epoch has its own ledger and its own pool, so a later epoch's supply
never dilutes an earlier epoch's unclaimed proceeds. The voters' part of a
sale is held on the auction record until each voter claims it.

All payouts floor. Rounding dust stays in the escrow account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from buyout.auction.engine import BuyoutAuctionEngine
from buyout.errors import (
    AuctionNotStarted,
    AuctionOngoing,
    InvalidAmount,
    InvalidAuctionIndex,
    NoFractions,
)
from buyout.models.auction import AuctionState
from buyout.models.epoch import Epoch
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    claimant: str
    epoch: int
    burned: int
    payout: int
    locked_payout: int = 0

    @property
    def total_payout(self) -> int:
        return self.payout + self.locked_payout


class ClaimEngine:
    """Burns fractions for their share of redeemed proceeds.

    Usage:
        claims = ClaimEngine(state, engine)
        result = claims.claim("alice", 1000 * 10**18)
        result = claims.claim_from_epoch("alice", 10**18, epoch_index=0)
    """

    def __init__(self, state: ProtocolState, engine: BuyoutAuctionEngine) -> None:
        self._state = state
        self._engine = engine

    def claim(self, claimant: str, amount: int) -> ClaimResult:
        """Claim against the current epoch."""
        epoch = self._state.current_epoch()
        if epoch is None:
            raise NoFractions(None)
        return self._claim(epoch, claimant, amount)

    def claim_from_epoch(self, claimant: str, amount: int, epoch_index: int) -> ClaimResult:
        """Claim against a specific, possibly historical, epoch."""
        return self._claim(self._state.epoch(epoch_index), claimant, amount)

    def claim_with_locked_fractions(
        self,
        claimant: str,
        item_id: int,
        auction_index: int,
        liquid_amount: int = 0,
    ) -> ClaimResult:
        """Collect the vote share of a redeemed auction plus an optional liquid claim.

        The liquid part is claimed in the epoch the auction belongs to.
        """
        history = self._state.item_auctions(item_id)
        if not 0 <= auction_index < len(history):
            raise InvalidAuctionIndex(item_id, auction_index, len(history))
        auction = history[auction_index]
        if auction.state == AuctionState.NOT_STARTED:
            raise AuctionNotStarted(item_id)
        if auction.state != AuctionState.REDEEMED:
            raise AuctionOngoing(item_id, auction.timer)
        if liquid_amount < 0:
            raise InvalidAmount(liquid_amount)

        epoch = self._state.epoch(auction.epoch)
        votes = auction.votes.of(claimant)
        if not votes and not liquid_amount:
            raise NoFractions(epoch.index)
        if liquid_amount:
            epoch.ledger.require_balance(claimant, liquid_amount)

        locked_payout = 0
        if votes:
            locked_payout = votes * auction.reserved_proceeds // auction.votes.total
            auction.reserved_proceeds -= locked_payout
            auction.votes.remove(claimant, votes)
            self._state.payment_token.transfer(
                self._state.escrow_account, claimant, locked_payout,
            )
            logger.debug(
                "Locked claim on item %d auction %d by %s: votes %d, payout %d",
                item_id, auction_index, claimant, votes, locked_payout,
            )

        if not liquid_amount:
            return ClaimResult(claimant, epoch.index, votes, 0, locked_payout)
        liquid = self._claim(epoch, claimant, liquid_amount)
        return ClaimResult(
            claimant, epoch.index, votes + liquid.burned, liquid.payout, locked_payout,
        )

    def finalize_and_claim(
        self,
        claimant: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ClaimResult:
        """Redeem the item's latest auction if still pending, then claim in its epoch."""
        if now is None:
            now = datetime.now(timezone.utc)
        if amount <= 0:
            raise InvalidAmount(amount)
        auction = self._state.latest_auction(item_id)
        if auction is None:
            raise AuctionNotStarted(item_id)
        epoch = self._state.epoch(auction.epoch)
        epoch.ledger.require_balance(claimant, amount)
        if auction.state != AuctionState.REDEEMED:
            self._engine.finalize(item_id, now)
        return self._claim(epoch, claimant, amount)

    def claimable(self, amount: int, epoch_index: Optional[int] = None) -> int:
        """Payout ``amount`` fractions would receive right now."""
        if epoch_index is None:
            epoch = self._state.current_epoch()
            if epoch is None:
                return 0
        else:
            epoch = self._state.epoch(epoch_index)
        supply = epoch.redeemable_supply
        if amount <= 0 or not supply:
            return 0
        return min(amount, supply) * epoch.proceeds // supply

    def _claim(self, epoch: Epoch, claimant: str, amount: int) -> ClaimResult:
        if amount <= 0:
            raise InvalidAmount(amount)
        if not epoch.redemptions:
            raise NoFractions(epoch.index)
        epoch.ledger.require_balance(claimant, amount)
        if amount > epoch.redeemable_supply:
            raise NoFractions(epoch.index)

        payout = amount * epoch.proceeds // epoch.redeemable_supply
        epoch.ledger.burn(claimant, amount)
        epoch.proceeds -= payout
        epoch.redeemable_supply -= amount
        self._state.payment_token.transfer(self._state.escrow_account, claimant, payout)
        logger.debug(
            "Claim in epoch %d by %s: burned %d, payout %d",
            epoch.index, claimant, amount, payout,
        )
        return ClaimResult(claimant, epoch.index, amount, payout)
