"""Tests for the buyout auction engine — bids, timers, refunds and redemption."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from buyout.collaborators import FixedCustodyVault, PercentageRoyalty
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
from buyout.models.auction import AuctionState
from buyout.policy.resolver import PolicyResolver
from buyout.service import BuyoutService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
E18 = 10**18
FPI = 5000 * E18
EXIT = 10**17
DURATION = timedelta(seconds=432000)
LOCK_TIME = timedelta(seconds=259200)


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


def _setup(service: BuyoutService, quantity: int = 1, **params) -> None:
    for item_id in range(1, quantity + 1):
        assert service.register_item(item_id, "seller", now=_now()).success
    result = service.mint_fractions(
        "seller", 1, quantity, FPI, exit_price=params.pop("exit_price", EXIT),
        now=_now(), **params,
    )
    assert result.success, result.errors
    for account in ("alice", "bob", "carol", "dave"):
        service.fund(account, 10 * E18)


@pytest.fixture
def service(resolver: PolicyResolver) -> BuyoutService:
    service = BuyoutService(resolver)
    _setup(service)
    return service


def _ledger(service: BuyoutService):
    return service.state.current_epoch().ledger


def _exchange(service: BuyoutService, account: str) -> int:
    return service.state.payment_token.balance_of(account)


class TestFirstBid:
    def test_below_exit_price_holds_top_bid_lock(self, service: BuyoutService) -> None:
        result = service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        assert result.state == AuctionState.NOT_STARTED
        assert result.timer == _now() + LOCK_TIME
        assert result.payment == EXIT // 2
        assert _exchange(service, "alice") == 10 * E18 - EXIT // 2
        assert service.auctions.auction_count(1) == 1

    def test_at_exit_price_starts_auction(self, service: BuyoutService) -> None:
        result = service.auctions.bid("alice", 1, EXIT, now=_now())
        assert result.state == AuctionState.ONGOING
        assert result.timer == _now() + DURATION
        assert service.auctions.get_auction(1).started_utc == _now()

    def test_first_bid_has_no_minimum(self, service: BuyoutService) -> None:
        assert service.auctions.minimal_bid(1) == 0
        result = service.auctions.bid("alice", 1, 1, now=_now())
        assert result.payment == 1

    def test_item_not_fractionalised(self, service: BuyoutService) -> None:
        with pytest.raises(TokenNotFractionalised):
            service.auctions.bid("alice", 7, EXIT, now=_now())

    def test_failed_bid_creates_no_auction(self, service: BuyoutService) -> None:
        with pytest.raises(InsufficientPayment):
            service.auctions.bid("erin", 1, EXIT, now=_now())
        assert service.auctions.auction_count(1) == 0


class TestMinimalIncrement:
    def test_boundary(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, 2 * EXIT, now=_now())
        minimal = service.auctions.minimal_bid(1)
        assert minimal == 2 * EXIT * 11000 // 10000
        with pytest.raises(InvalidBid) as exc:
            service.auctions.bid("bob", 1, minimal - 1, now=_now())
        assert exc.value.minimal_bid == minimal
        assert exc.value.price == minimal - 1
        result = service.auctions.bid("bob", 1, minimal, now=_now())
        assert result.price == minimal

    def test_rounded_minimum_equal_to_max_bid_is_accepted(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, 5, now=_now())
        assert service.auctions.minimal_bid(1) == 5
        with pytest.raises(InvalidBid) as exc:
            service.auctions.bid("bob", 1, 4, now=_now())
        assert exc.value.minimal_bid == 5
        result = service.auctions.bid("bob", 1, 5, now=_now())
        assert result.refunded_bidder == "alice"
        assert service.auctions.get_auction(1).max_bidder == "bob"

    def test_zero_price_rejected(self, service: BuyoutService) -> None:
        with pytest.raises(InvalidAmount):
            service.auctions.bid("alice", 1, 0, now=_now())
        with pytest.raises(InvalidAmount):
            service.auctions.bid("alice", 1, -1, now=_now())
        assert service.auctions.auction_count(1) == 0


class TestOutbidding:
    def test_previous_bidder_refunded_exactly(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, 2 * EXIT, now=_now())
        result = service.auctions.bid("bob", 1, 4 * EXIT, now=_now())
        assert result.refunded_bidder == "alice"
        assert result.refunded_amount == 2 * EXIT
        assert _exchange(service, "alice") == 10 * E18
        assert _exchange(service, "bob") == 10 * E18 - 4 * EXIT
        assert _exchange(service, service.state.escrow_account) == 4 * EXIT

    def test_bid_fractions_refunded(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "alice", 1000 * E18)
        service.auctions.bid("alice", 1, EXIT // 2, fractions=1000 * E18, now=_now())
        assert _ledger(service).locked_balance_of("alice", LockKind.BID) == 1000 * E18
        service.auctions.bid("bob", 1, EXIT, now=_now())
        assert _ledger(service).balance_of("alice") == 1000 * E18
        assert _ledger(service).locked_balance_of("alice") == 0

    def test_votes_not_refunded_on_outbid(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "carol", 1000 * E18)
        service.auctions.bid("alice", 1, EXIT // 4, now=_now())
        service.voting.vote_to_start_auction("carol", 1, 1000 * E18, now=_now())
        service.auctions.bid("bob", 1, EXIT // 2, now=_now())
        assert _ledger(service).locked_balance_of("carol", LockKind.VOTE) == 1000 * E18

    def test_failed_outbid_leaves_leader(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, 2 * EXIT, now=_now())
        with pytest.raises(InsufficientPayment):
            service.auctions.bid("erin", 1, 4 * EXIT, now=_now())
        auction = service.auctions.get_auction(1)
        assert auction.max_bidder == "alice"
        assert auction.locked_bid_amount == 2 * EXIT
        assert _exchange(service, service.state.escrow_account) == 2 * EXIT

    def test_rebid_counts_own_refund(self, resolver: PolicyResolver) -> None:
        service = BuyoutService(resolver)
        _setup(service)
        service.fund("frank", 22 * 10**16)
        service.auctions.bid("frank", 1, 2 * EXIT, now=_now())
        result = service.auctions.bid("frank", 1, 22 * 10**16, now=_now())
        assert result.payment == 22 * 10**16
        assert _exchange(service, "frank") == 0


class TestSuppliedFractions:
    def test_payment_covers_only_missing_share(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "alice", 1000 * E18)
        result = service.auctions.bid("alice", 1, E18, fractions=1000 * E18, now=_now())
        assert result.payment == E18 * 4000 // 5000
        assert result.supplied_fractions == 1000 * E18

    def test_insufficient_fractions(self, service: BuyoutService) -> None:
        with pytest.raises(InsufficientBalance):
            service.auctions.bid("alice", 1, EXIT, fractions=1, now=_now())

    def test_voted_units_cannot_be_bid(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "bob", 1000 * E18)
        service.auctions.bid("alice", 1, EXIT // 4, now=_now())
        service.voting.vote_to_start_auction("bob", 1, 1000 * E18, now=_now())
        with pytest.raises(InsufficientBalance):
            service.auctions.bid("bob", 1, EXIT // 2, fractions=1000 * E18, now=_now())

    def test_full_cover_reserves_without_payment(self, resolver: PolicyResolver) -> None:
        service = BuyoutService(resolver)
        _setup(service, quantity=2)
        result = service.auctions.bid("seller", 1, 1, fractions=7000 * E18, now=_now())
        assert result.state == AuctionState.RESERVED
        assert result.payment == 0
        assert result.supplied_fractions == FPI
        assert result.timer == _now() + DURATION
        assert _ledger(service).balance_of("seller") == 5000 * E18

    def test_supply_capped_by_other_votes(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "bob", 1000 * E18)
        _ledger(service).transfer("seller", "alice", 4000 * E18)
        service.auctions.bid("carol", 1, EXIT // 4, now=_now())
        service.voting.vote_to_start_auction("bob", 1, 1000 * E18, now=_now())
        result = service.auctions.bid("alice", 1, EXIT // 2, fractions=4000 * E18, now=_now())
        assert result.supplied_fractions == 4000 * E18
        assert result.state == AuctionState.ONGOING
        assert result.payment == (EXIT // 2) * 1000 // 5000

    def test_bidder_votes_count_toward_cover(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "bob", 5000 * E18)
        service.auctions.bid("alice", 1, EXIT // 4, now=_now())
        service.voting.vote_to_start_auction("bob", 1, 2000 * E18, now=_now())
        result = service.auctions.bid("bob", 1, EXIT // 2, fractions=3000 * E18, now=_now())
        assert result.state == AuctionState.RESERVED
        assert result.payment == 0

    def test_reserved_blocks_bids(self, resolver: PolicyResolver) -> None:
        service = BuyoutService(resolver)
        _setup(service)
        service.auctions.bid("seller", 1, 1, fractions=FPI, now=_now())
        with pytest.raises(AuctionReserved):
            service.auctions.bid("alice", 1, EXIT, now=_now())


class TestTimers:
    def test_bid_after_end_rejected(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        with pytest.raises(AuctionEnded):
            service.auctions.bid("bob", 1, 2 * EXIT, now=_now() + DURATION + timedelta(seconds=1))

    def test_bid_at_deadline_allowed(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        result = service.auctions.bid("bob", 1, 2 * EXIT, now=_now() + DURATION)
        assert result.timer == _now() + DURATION + timedelta(minutes=15)

    def test_late_bid_extends(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        late = _now() + DURATION - timedelta(minutes=10)
        result = service.auctions.bid("bob", 1, 2 * EXIT, now=late)
        assert result.timer == late + timedelta(minutes=15)

    def test_early_bid_does_not_extend(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        result = service.auctions.bid("bob", 1, 2 * EXIT, now=_now() + timedelta(days=1))
        assert result.timer == _now() + DURATION

    def test_new_top_bid_refreshes_lock(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 4, now=_now())
        later = _now() + timedelta(days=1)
        result = service.auctions.bid("bob", 1, EXIT // 2, now=later)
        assert result.state == AuctionState.NOT_STARTED
        assert result.timer == later + LOCK_TIME


class TestRemoveBid:
    def test_locked_until_lock_time(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        with pytest.raises(BidRemovalNotAllowed):
            service.auctions.remove_bid("alice", 1, now=_now() + LOCK_TIME)

    def test_removed_after_lock(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        result = service.auctions.remove_bid("alice", 1, now=_now() + LOCK_TIME + timedelta(seconds=1))
        assert result.refunded_amount == EXIT // 2
        assert _exchange(service, "alice") == 10 * E18
        auction = service.auctions.get_auction(1)
        assert auction.max_bidder is None
        assert service.auctions.minimal_bid(1) == 0

    def test_only_max_bidder(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        with pytest.raises(NotMaxBidder):
            service.auctions.remove_bid("bob", 1, now=_now() + timedelta(days=4))

    def test_not_while_ongoing(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        with pytest.raises(AuctionOngoing):
            service.auctions.remove_bid("alice", 1, now=_now() + timedelta(days=10))

    def test_no_bids(self, service: BuyoutService) -> None:
        with pytest.raises(NoBids):
            service.auctions.remove_bid("alice", 1, now=_now())


class TestStartAuction:
    def test_no_bids(self, service: BuyoutService) -> None:
        with pytest.raises(NoBids):
            service.auctions.start_auction(1, now=_now())

    def test_bid_below_exit_price(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        with pytest.raises(BidBelowExitPrice):
            service.auctions.start_auction(1, now=_now())

    def test_starts_after_exit_price_lowered(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        service.state.current_epoch().auction_parameters.exit_price = EXIT // 2
        later = _now() + timedelta(hours=1)
        auction = service.auctions.start_auction(1, now=later)
        assert auction.state == AuctionState.ONGOING
        assert auction.timer == later + DURATION

    def test_already_started(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        with pytest.raises(AuctionOngoing):
            service.auctions.start_auction(1, now=_now())


class TestRedeem:
    def test_not_started(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        with pytest.raises(AuctionNotStarted):
            service.auctions.redeem("alice", 1, now=_now() + timedelta(days=30))

    def test_before_timer(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        with pytest.raises(AuctionOngoing):
            service.auctions.redeem("alice", 1, now=_now() + DURATION)

    def test_only_max_bidder(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        with pytest.raises(NotMaxBidder):
            service.auctions.redeem("bob", 1, now=_now() + DURATION + timedelta(seconds=1))

    def test_redeem_transfers_item_and_books_proceeds(self, service: BuyoutService) -> None:
        _ledger(service).transfer("seller", "alice", 1000 * E18)
        service.auctions.bid("alice", 1, E18, fractions=1000 * E18, now=_now())
        result = service.auctions.redeem("alice", 1, now=_now() + DURATION + timedelta(seconds=1))
        epoch = service.state.epoch(0)
        assert result.sale_amount == 8 * 10**17
        assert result.burned_fractions == 1000 * E18
        assert service.state.registry.owner_of(1) == "alice"
        assert service.auctions.get_auction(1).state == AuctionState.REDEEMED
        assert epoch.proceeds == 8 * 10**17
        assert epoch.ledger.total_supply == 4000 * E18
        assert epoch.closed
        assert service.state.check_invariants() == []

    def test_second_redeem_rejected(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        after = _now() + DURATION + timedelta(seconds=1)
        service.auctions.redeem("alice", 1, now=after)
        with pytest.raises(AlreadyRedeemed):
            service.auctions.redeem("alice", 1, now=after)

    def test_reserved_redeemable_after_timer(self, resolver: PolicyResolver) -> None:
        service = BuyoutService(resolver)
        _setup(service)
        service.auctions.bid("seller", 1, 1, fractions=FPI, now=_now())
        result = service.auctions.redeem("seller", 1, now=_now() + DURATION + timedelta(seconds=1))
        assert result.net_proceeds == 0
        assert service.state.epoch(0).ledger.total_supply == 0

    def test_finalize_is_permissionless(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        result = service.auctions.finalize(1, now=_now() + DURATION + timedelta(seconds=1))
        assert result.bidder == "alice"
        assert service.state.registry.owner_of(1) == "alice"


class TestSettlement:
    def test_royalty_and_positive_vault_delta(self, resolver: PolicyResolver) -> None:
        vault = FixedCustodyVault({1: 10**16})
        service = BuyoutService(
            resolver, custody_vault=vault, royalty_calculator=PercentageRoyalty(500),
        )
        _setup(service)
        service.fund(vault.account_id, 10**16)
        service.auctions.bid("alice", 1, 4 * EXIT, now=_now())
        result = service.auctions.redeem("alice", 1, now=_now() + DURATION + timedelta(seconds=1))
        assert result.royalty == 2 * 10**16
        assert result.vault_delta == 10**16
        assert result.net_proceeds == 4 * EXIT - 2 * 10**16 + 10**16
        assert _exchange(service, "royalty:recipient") == 2 * 10**16
        assert service.state.epoch(0).proceeds == result.net_proceeds
        assert _exchange(service, service.state.escrow_account) == result.net_proceeds

    def test_negative_vault_delta_paid_to_vault(self, resolver: PolicyResolver) -> None:
        vault = FixedCustodyVault({1: -5 * 10**16})
        service = BuyoutService(resolver, custody_vault=vault)
        _setup(service)
        service.auctions.bid("alice", 1, 4 * EXIT, now=_now())
        result = service.auctions.redeem("alice", 1, now=_now() + DURATION + timedelta(seconds=1))
        assert result.net_proceeds == 4 * EXIT - 5 * 10**16
        assert _exchange(service, vault.account_id) == 5 * 10**16


class TestQueries:
    def test_get_auction_by_index(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT, now=_now())
        assert service.auctions.get_auction(1, 0).max_bidder == "alice"
        with pytest.raises(InvalidAuctionIndex):
            service.auctions.get_auction(1, 1)

    def test_get_auction_without_history(self, service: BuyoutService) -> None:
        with pytest.raises(NoBids):
            service.auctions.get_auction(1)

    def test_illegal_transition_rejected(self, service: BuyoutService) -> None:
        service.auctions.bid("alice", 1, EXIT // 2, now=_now())
        auction = service.auctions.get_auction(1)
        with pytest.raises(ValueError):
            auction.transition_to(AuctionState.REDEEMED)
