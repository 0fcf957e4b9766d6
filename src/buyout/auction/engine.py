"""Buyout auction engine — the per-item auction state machine.

A bid pays for the part of one item that the bidder does not already
cover with their own fractions. Supplied fractions and the payment are
held by the protocol until the bid is outbid, removed or redeemed.

State machine per (item, epoch):
    NOT_STARTED → ONGOING → REDEEMED
    NOT_STARTED → RESERVED → REDEEMED
    ONGOING → RESERVED

Before the auction starts, a bid below the exit price only holds a
top-bid lock: nobody can remove it until the lock elapses. The auction
starts when a bid reaches the exit price, when bid fractions plus votes
reach the unlock threshold, or when a single bid covers the whole item.

Timers are plain datetimes compared against ``now`` on each call. A timer
has elapsed once ``now > timer``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from buyout.collaborators import (
    CustodyVault,
    NullCustodyVault,
    NullRoyaltyCalculator,
    RoyaltyCalculator,
)
from buyout.errors import (
    AlreadyRedeemed,
    AuctionEnded,
    AuctionNotStarted,
    AuctionOngoing,
    AuctionReserved,
    BidBelowExitPrice,
    BidRemovalNotAllowed,
    InsufficientBalance,
    InsufficientPayment,
    InvalidAmount,
    InvalidAuctionIndex,
    InvalidBid,
    NoBids,
    NotMaxBidder,
    TokenNotFractionalised,
)
from buyout.ledger.fraction_ledger import LockKind
from buyout.models.auction import HUNDRED_PERCENT, Auction, AuctionState
from buyout.models.epoch import Epoch
from buyout.policy.resolver import PolicyResolver
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BidResult:
    item_id: int
    epoch: int
    bidder: str
    price: int
    payment: int
    supplied_fractions: int
    state: AuctionState
    timer: Optional[datetime]
    refunded_bidder: Optional[str] = None
    refunded_amount: int = 0
    refunded_fractions: int = 0


@dataclass(frozen=True)
class RedemptionResult:
    """Money and fraction flows of one redemption."""
    item_id: int
    epoch: int
    bidder: str
    sale_amount: int
    vault_delta: int
    royalty: int
    net_proceeds: int
    voter_share: int
    burned_fractions: int


class BuyoutAuctionEngine:
    """Runs buyout auctions over the shared protocol state.

    Usage:
        engine = BuyoutAuctionEngine(resolver, state)
        engine.bid("alice", item_id=1, price=2 * 10**17, fractions=0, now=t0)
        engine.redeem("alice", item_id=1, now=t0 + timedelta(days=8))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        state: ProtocolState,
        custody_vault: Optional[CustodyVault] = None,
        royalty_calculator: Optional[RoyaltyCalculator] = None,
    ) -> None:
        self._state = state
        self._custody_vault = custody_vault or NullCustodyVault()
        self._royalties = royalty_calculator or NullRoyaltyCalculator()
        self._increment = resolver.minimal_bid_increment()
        self._end_buffer = timedelta(seconds=resolver.auction_end_buffer())

    # ------------------------------------------------------------------
    # Bidding
    # ------------------------------------------------------------------

    def bid(
        self,
        bidder: str,
        item_id: int,
        price: int,
        fractions: int = 0,
        now: Optional[datetime] = None,
    ) -> BidResult:
        """Place a bid of ``price`` supplying up to ``fractions`` of one item.

        Supplied fractions beyond what the item still needs stay liquid. If
        the supplied fractions plus the bidder's own votes cover the whole
        item, nothing is paid and the auction is reserved for the bidder.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if price <= 0:
            raise InvalidAmount(price)
        if fractions < 0:
            raise InvalidAmount(fractions)

        epoch = self.live_epoch_for(item_id)
        auction = self.existing_auction(item_id, epoch) or self._new_auction(item_id, epoch)

        if auction.state == AuctionState.RESERVED:
            raise AuctionReserved(item_id)
        if auction.state == AuctionState.ONGOING and now > auction.timer:
            raise AuctionEnded(item_id, auction.timer)

        minimal = self._minimal_bid(auction)
        if price < minimal:
            raise InvalidBid(item_id, price, minimal)

        total = auction.total_fractions
        bidder_votes = auction.votes.of(bidder)
        supplied = min(fractions, total - auction.votes.total)
        reserved = supplied + bidder_votes >= total
        if reserved:
            supplied = total - bidder_votes
            payment = 0
        else:
            payment = price * (total - supplied - bidder_votes) // total

        # A re-bidding leader gets their current bid back first.
        previous = auction.max_bidder
        refund_fractions = auction.locked_fractions if previous == bidder else 0
        refund_payment = auction.locked_bid_amount if previous == bidder else 0
        available = epoch.ledger.balance_of(bidder) + refund_fractions
        if available < supplied:
            raise InsufficientBalance(bidder, available, supplied)
        funds = self._state.payment_token.balance_of(bidder) + refund_payment
        if funds < payment:
            raise InsufficientPayment(bidder, funds, payment)

        refunded_amount, refunded_fractions = self._refund_leader(auction, epoch)
        if supplied:
            epoch.ledger.lock(bidder, supplied, LockKind.BID)
        self._state.payment_token.transfer(bidder, self._state.escrow_account, payment)

        auction.max_bid = price
        auction.max_bidder = bidder
        auction.locked_fractions = supplied
        auction.locked_bid_amount = payment
        self._store(auction)

        params = epoch.auction_parameters
        if auction.state == AuctionState.NOT_STARTED:
            if reserved:
                self._start(auction, epoch, now, AuctionState.RESERVED)
            elif price >= params.exit_price or self.quorum_reached(auction, epoch):
                self._start(auction, epoch, now)
            else:
                auction.timer = now + timedelta(seconds=params.top_bid_lock_time)
        else:
            if auction.timer - now < self._end_buffer:
                auction.timer = now + self._end_buffer
            if reserved:
                auction.transition_to(AuctionState.RESERVED)

        logger.debug(
            "Bid on item %d by %s: price %d, payment %d, fractions %d (%s)",
            item_id, bidder, price, payment, supplied, auction.state.value,
        )
        return BidResult(
            item_id=item_id,
            epoch=epoch.index,
            bidder=bidder,
            price=price,
            payment=payment,
            supplied_fractions=supplied,
            state=auction.state,
            timer=auction.timer,
            refunded_bidder=previous,
            refunded_amount=refunded_amount,
            refunded_fractions=refunded_fractions,
        )

    def remove_bid(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> BidResult:
        """Withdraw the leading bid after its top-bid lock has elapsed."""
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self.live_epoch_for(item_id)
        auction = self.existing_auction(item_id, epoch)
        if auction is None or auction.max_bidder is None:
            raise NoBids(item_id)
        if caller != auction.max_bidder:
            raise NotMaxBidder(item_id, caller, auction.max_bidder)
        if auction.state == AuctionState.ONGOING:
            raise AuctionOngoing(item_id, auction.timer)
        if auction.state == AuctionState.RESERVED:
            raise AuctionReserved(item_id)
        if now <= auction.timer:
            raise BidRemovalNotAllowed(item_id, auction.timer)

        price = auction.max_bid
        refunded_amount, refunded_fractions = self._refund_leader(auction, epoch)
        auction.clear_leader()
        logger.debug("Bid on item %d removed by %s", item_id, caller)
        return BidResult(
            item_id=item_id,
            epoch=epoch.index,
            bidder=caller,
            price=price,
            payment=0,
            supplied_fractions=0,
            state=auction.state,
            timer=None,
            refunded_bidder=caller,
            refunded_amount=refunded_amount,
            refunded_fractions=refunded_fractions,
        )

    def start_auction(self, item_id: int, now: Optional[datetime] = None) -> Auction:
        """Start the auction once the leading bid meets the exit price.

        Anyone may call this, typically after governance lowered the exit
        price below a bid that was placed earlier.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self.live_epoch_for(item_id)
        auction = self.existing_auction(item_id, epoch)
        if auction is None or auction.max_bidder is None:
            raise NoBids(item_id)
        if auction.started:
            raise AuctionOngoing(item_id, auction.timer)
        if auction.max_bid < epoch.exit_price:
            raise BidBelowExitPrice(item_id, auction.max_bid, epoch.exit_price)
        self._start(auction, epoch, now)
        return auction

    def start_if_quorum(self, auction: Auction, epoch: Epoch, now: datetime) -> bool:
        """Start a not-yet-started auction whose locked fractions reach quorum."""
        if auction.started or auction.max_bidder is None:
            return False
        if not self.quorum_reached(auction, epoch):
            return False
        self._start(auction, epoch, now)
        return True

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def redeem(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        """Hand the item to the winning bidder once the auction has ended."""
        if now is None:
            now = datetime.now(timezone.utc)
        auction = self.redeemable_auction(item_id, now)
        if caller != auction.max_bidder:
            raise NotMaxBidder(item_id, caller, auction.max_bidder)
        return self._redeem(auction, now)

    def finalize(self, item_id: int, now: Optional[datetime] = None) -> RedemptionResult:
        """Permissionless redemption on behalf of the winning bidder."""
        if now is None:
            now = datetime.now(timezone.utc)
        return self._redeem(self.redeemable_auction(item_id, now), now)

    def redeemable_auction(self, item_id: int, now: datetime) -> Auction:
        """Return the item's latest auction if it can be redeemed at ``now``."""
        auction = self._state.latest_auction(item_id)
        current = self._state.current_epoch()
        if auction is None or (
            current is not None
            and item_id in current.live_items
            and auction.epoch != current.index
        ):
            raise AuctionNotStarted(item_id)
        if auction.state == AuctionState.REDEEMED:
            raise AlreadyRedeemed(item_id)
        if auction.state == AuctionState.NOT_STARTED:
            raise AuctionNotStarted(item_id)
        if now <= auction.timer:
            raise AuctionOngoing(item_id, auction.timer)
        return auction

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def live_epoch_for(self, item_id: int) -> Epoch:
        epoch = self._state.current_epoch()
        if epoch is None or item_id not in epoch.live_items:
            raise TokenNotFractionalised(item_id)
        return epoch

    def existing_auction(self, item_id: int, epoch: Epoch) -> Optional[Auction]:
        latest = self._state.latest_auction(item_id)
        if latest is not None and latest.epoch == epoch.index:
            return latest
        return None

    def get_auction(self, item_id: int, index: Optional[int] = None) -> Auction:
        history = self._state.item_auctions(item_id)
        if index is None:
            if not history:
                raise NoBids(item_id)
            return history[-1]
        if not 0 <= index < len(history):
            raise InvalidAuctionIndex(item_id, index, len(history))
        return history[index]

    def auction_count(self, item_id: int) -> int:
        return len(self._state.item_auctions(item_id))

    def minimal_bid(self, item_id: int) -> int:
        epoch = self.live_epoch_for(item_id)
        auction = self.existing_auction(item_id, epoch)
        return self._minimal_bid(auction) if auction else 0

    def quorum_reached(self, auction: Auction, epoch: Epoch) -> bool:
        locked = auction.locked_fractions + auction.votes.total
        threshold = epoch.auction_parameters.unlock_threshold
        return locked * HUNDRED_PERCENT >= threshold * auction.total_fractions

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _minimal_bid(self, auction: Auction) -> int:
        if auction.max_bidder is None:
            return 0
        return auction.max_bid * (HUNDRED_PERCENT + self._increment) // HUNDRED_PERCENT

    def _new_auction(self, item_id: int, epoch: Epoch) -> Auction:
        return Auction(
            item_id=item_id,
            epoch=epoch.index,
            total_fractions=epoch.item_share(),
        )

    def _store(self, auction: Auction) -> None:
        history = self._state.auctions.setdefault(auction.item_id, [])
        if not history or history[-1] is not auction:
            history.append(auction)

    def _start(
        self,
        auction: Auction,
        epoch: Epoch,
        now: datetime,
        state: AuctionState = AuctionState.ONGOING,
    ) -> None:
        auction.transition_to(state)
        auction.timer = now + timedelta(seconds=epoch.auction_parameters.duration)
        auction.started_utc = now
        logger.info(
            "Auction for item %d started in epoch %d (%s), ends %s",
            auction.item_id, epoch.index, state.value, auction.timer.isoformat(),
        )

    def _refund_leader(self, auction: Auction, epoch: Epoch) -> tuple[int, int]:
        """Return the leader's payment and bid fractions. Votes stay locked."""
        if auction.max_bidder is None:
            return 0, 0
        amount = auction.locked_bid_amount
        fractions = auction.locked_fractions
        self._state.payment_token.transfer(
            self._state.escrow_account, auction.max_bidder, amount,
        )
        if fractions:
            epoch.ledger.unlock(auction.max_bidder, fractions, LockKind.BID)
        auction.locked_bid_amount = 0
        auction.locked_fractions = 0
        return amount, fractions

    def _redeem(self, auction: Auction, now: datetime) -> RedemptionResult:
        epoch = self._state.epoch(auction.epoch)
        token = self._state.payment_token
        escrow = self._state.escrow_account
        item_id = auction.item_id
        bidder = auction.max_bidder

        gross = auction.locked_bid_amount
        royalty = max(0, min(self._royalties.royalty_for(item_id, gross), gross))
        delta = self._custody_vault.settle(item_id)
        if delta > 0:
            token.require_balance(self._custody_vault.account_id, delta)
            vault_delta = delta
        else:
            vault_delta = -min(-delta, gross - royalty)
        net = gross - royalty + vault_delta

        if vault_delta > 0:
            token.transfer(self._custody_vault.account_id, escrow, vault_delta)
        token.transfer(escrow, self._royalties.recipient, royalty)
        if vault_delta < 0:
            token.transfer(escrow, self._custody_vault.account_id, -vault_delta)

        bid_fractions = auction.locked_fractions
        bidder_votes = auction.votes.of(bidder)
        others_votes = auction.votes.total - bidder_votes
        if bid_fractions:
            epoch.ledger.burn_locked(bidder, bid_fractions, LockKind.BID)
        for voter, amount in auction.votes.individual.items():
            epoch.ledger.burn_locked(voter, amount, LockKind.VOTE)
        if bidder_votes:
            auction.votes.remove(bidder, bidder_votes)

        remaining = auction.total_fractions - bid_fractions - bidder_votes
        voter_share = others_votes * net // remaining if others_votes and remaining > 0 else 0
        auction.reserved_proceeds = voter_share
        epoch.proceeds += net - voter_share
        epoch.redeemable_supply += max(0, remaining - others_votes)
        epoch.redemptions += 1
        epoch.live_items.discard(item_id)

        self._state.registry.transfer(item_id, bidder)
        auction.transition_to(AuctionState.REDEEMED)
        auction.redeemed_utc = now
        logger.info(
            "Item %d redeemed by %s in epoch %d: sale %d, net %d, voters %d",
            item_id, bidder, epoch.index, gross, net, voter_share,
        )
        if epoch.closed:
            logger.info("Epoch %d closed", epoch.index)
        return RedemptionResult(
            item_id=item_id,
            epoch=epoch.index,
            bidder=bidder,
            sale_amount=gross,
            vault_delta=vault_delta,
            royalty=royalty,
            net_proceeds=net,
            voter_share=voter_share,
            burned_fractions=bid_fractions + bidder_votes + others_votes,
        )
