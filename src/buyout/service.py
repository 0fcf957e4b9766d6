"""Buyout service — unified facade over the buyout engine.

This is the primary interface for programmatic access. It wires the
subsystems to one shared ProtocolState:
- Item registry and exchange asset funding
- Fractionalisation (epochs, supply)
- Buyout auctions and votes to start them
- Claims against epoch proceeds
- Exit price governance and the oracle registry

Engines raise named errors; the service turns them into ServiceResult
failures carrying the error class name as ``error_code``. Audit events are
recorded only for operations that succeeded. If the event log cannot be
written, the state change stands and the failure is returned as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from buyout.auction.engine import BuyoutAuctionEngine, RedemptionResult
from buyout.auction.voting import VotingSubsystem
from buyout.claims.distribution import ClaimEngine, ClaimResult
from buyout.collaborators import CustodyVault, PriceOracle, RoyaltyCalculator
from buyout.fractionalization.manager import FractionalizationManager
from buyout.governance.oracle_registry import PriceOracleRegistry
from buyout.governance.price import PriceGovernance
from buyout.models.auction import AuctionParameters, AuctionState, VaultParameters
from buyout.models.governance import PriceProposal, ProposalState
from buyout.persistence.event_log import EventKind, EventLog, EventRecord
from buyout.policy.resolver import PolicyResolver
from buyout.primitives.registry import ItemState
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


class BuyoutService:
    """Unified buyout engine facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = BuyoutService(resolver, event_log=EventLog())

        service.register_item(1, "seller")
        service.mint_fractions("seller", 1, 1, 5000 * 10**18, exit_price=10**17)
        service.fund("alice", 10**18)
        result = service.bid("alice", 1, 2 * 10**17)
        if not result.success:
            print(result.error_code, result.errors)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
        custody_vault: Optional[CustodyVault] = None,
        royalty_calculator: Optional[RoyaltyCalculator] = None,
        state: Optional[ProtocolState] = None,
    ) -> None:
        self._resolver = resolver
        self._state = state or ProtocolState(escrow_account=resolver.account("escrow"))
        self._oracles = PriceOracleRegistry()
        self._governance = PriceGovernance(resolver, self._state, self._oracles)
        self._fractions = FractionalizationManager(
            resolver, self._state, self._oracles,
            transfer_hook=self._governance.adjust_votes_on_transfer,
            custody_vault=custody_vault,
        )
        self._auctions = BuyoutAuctionEngine(
            resolver, self._state, custody_vault, royalty_calculator,
        )
        self._voting = VotingSubsystem(self._state, self._auctions)
        self._claims = ClaimEngine(self._state, self._auctions)

        self._event_log = event_log
        # Continue numbering from a persisted log
        self._event_counter = event_log.count if event_log is not None else 0

    @property
    def state(self) -> ProtocolState:
        return self._state

    @property
    def auctions(self) -> BuyoutAuctionEngine:
        return self._auctions

    @property
    def voting(self) -> VotingSubsystem:
        return self._voting

    @property
    def claims(self) -> ClaimEngine:
        return self._claims

    @property
    def governance(self) -> PriceGovernance:
        return self._governance

    # ------------------------------------------------------------------
    # Registry and funding
    # ------------------------------------------------------------------

    def register_item(
        self,
        item_id: int,
        owner: str,
        state: ItemState = ItemState.VERIFIED,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Register an item. Items default to VERIFIED so they can be fractionalised."""
        try:
            self._state.registry.mint(item_id, owner, ItemState(state))
        except ValueError as e:
            return self._failure(e)
        data = {"item_id": item_id, "owner": owner, "state": ItemState(state).value}
        return self._success(EventKind.ITEM_REGISTERED, owner, data, now)

    def approve(self, owner: str, operator: Optional[str], item_id: int) -> ServiceResult:
        try:
            self._state.registry.approve(owner, operator, item_id)
        except ValueError as e:
            return self._failure(e)
        return ServiceResult(success=True, data={"item_id": item_id, "approved": operator})

    def fund(self, account: str, amount: int) -> ServiceResult:
        """Mint exchange asset to an account."""
        try:
            self._state.payment_token.mint(account, amount)
        except ValueError as e:
            return self._failure(e)
        return ServiceResult(
            success=True,
            data={"account": account, "balance": self._state.payment_token.balance_of(account)},
        )

    # ------------------------------------------------------------------
    # Oracles
    # ------------------------------------------------------------------

    def add_price_oracle(
        self,
        oracle: PriceOracle,
        identifier: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            self._oracles.add_price_oracle(oracle, identifier)
        except ValueError as e:
            return self._failure(e)
        return self._success(EventKind.ORACLE_ADDED, "system", {"identifier": identifier}, now)

    def remove_price_oracle(self, identifier: str, now: Optional[datetime] = None) -> ServiceResult:
        try:
            self._oracles.remove_price_oracle(identifier)
        except ValueError as e:
            return self._failure(e)
        return self._success(EventKind.ORACLE_REMOVED, "system", {"identifier": identifier}, now)

    # ------------------------------------------------------------------
    # Fractionalisation
    # ------------------------------------------------------------------

    def mint_fractions(
        self,
        caller: str,
        item_id: int,
        quantity: int,
        fractions_per_item: int,
        exit_price: int,
        duration: int = 0,
        unlock_threshold: int = 0,
        top_bid_lock_time: int = 0,
        vault_parameters: Optional[dict[str, int]] = None,
        additional_deposit: int = 0,
        price_oracle: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Initial fractionalisation of ``quantity`` items starting at ``item_id``."""
        try:
            epoch = self._fractions.mint_fractions(
                caller, item_id, quantity, fractions_per_item,
                AuctionParameters(exit_price, duration, unlock_threshold, top_bid_lock_time),
                vault_parameters=VaultParameters(**(vault_parameters or {})),
                additional_deposit=additional_deposit,
                price_oracle=price_oracle,
                now=now,
            )
        except ValueError as e:
            return self._failure(e)

        warnings = self._record(EventKind.EPOCH_OPENED, caller, {
            "epoch": epoch.index,
            "fractions_per_item": epoch.fractions_per_item,
            "auction_parameters": epoch.auction_parameters.as_dict(),
            "price_oracle": epoch.price_oracle,
        }, now)
        return self._fractionalised(caller, epoch.index, item_id, quantity, now, warnings)

    def mint_subsequent_fractions(
        self,
        caller: str,
        item_id: int,
        quantity: int,
        additional_deposit: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            epoch = self._fractions.mint_subsequent_fractions(
                caller, item_id, quantity, additional_deposit, now=now,
            )
        except ValueError as e:
            return self._failure(e)
        return self._fractionalised(caller, epoch.index, item_id, quantity, now, [])

    def mint_additional_fractions(
        self,
        caller: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            balance = self._fractions.mint_additional_fractions(caller, amount)
        except ValueError as e:
            return self._failure(e)
        epoch = self._state.current_epoch()
        data = {"epoch": epoch.index, "amount": amount, "balance": balance}
        return self._success(EventKind.ADDITIONAL_FRACTIONS_MINTED, caller, data, now)

    def transfer_fractions(
        self,
        sender: str,
        recipient: str,
        amount: int,
        epoch_index: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Move liquid fractions between holders within one epoch."""
        try:
            epoch = (
                self._state.epoch(epoch_index) if epoch_index is not None
                else self._state.epoch(len(self._state.epochs) - 1)
            )
            epoch.ledger.transfer(sender, recipient, amount)
        except ValueError as e:
            return self._failure(e)
        data = {"epoch": epoch.index, "recipient": recipient, "amount": amount}
        return self._success(EventKind.FRACTIONS_TRANSFERRED, sender, data, now)

    # ------------------------------------------------------------------
    # Auctions
    # ------------------------------------------------------------------

    def bid(
        self,
        bidder: str,
        item_id: int,
        price: int,
        fractions: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            before = self._auction_state(item_id)
            result = self._auctions.bid(bidder, item_id, price, fractions, now=now)
        except ValueError as e:
            return self._failure(e)

        data = {
            "item_id": item_id,
            "epoch": result.epoch,
            "price": price,
            "payment": result.payment,
            "supplied_fractions": result.supplied_fractions,
            "state": result.state.value,
            "timer": _iso(result.timer),
            "refunded_bidder": result.refunded_bidder,
            "refunded_amount": result.refunded_amount,
            "refunded_fractions": result.refunded_fractions,
        }
        warnings = self._record(EventKind.BID_PLACED, bidder, data, now)
        warnings += self._record_start(item_id, before, result.state, bidder, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def remove_bid(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._auctions.remove_bid(caller, item_id, now=now)
        except ValueError as e:
            return self._failure(e)
        data = {
            "item_id": item_id,
            "epoch": result.epoch,
            "refunded_amount": result.refunded_amount,
            "refunded_fractions": result.refunded_fractions,
        }
        return self._success(EventKind.BID_REMOVED, caller, data, now)

    def start_auction(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            auction = self._auctions.start_auction(item_id, now=now)
        except ValueError as e:
            return self._failure(e)
        data = {"item_id": item_id, "epoch": auction.epoch, "timer": _iso(auction.timer)}
        return self._success(EventKind.AUCTION_STARTED, caller, data, now)

    def vote_to_start_auction(
        self,
        voter: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            before = self._auction_state(item_id)
            locked = self._voting.vote_to_start_auction(voter, item_id, amount, now=now)
            after = self._auction_state(item_id)
        except ValueError as e:
            return self._failure(e)
        data = {
            "item_id": item_id,
            "amount": locked,
            "total_votes": self._voting.total_votes(item_id),
            "state": after.value,
        }
        warnings = self._record(EventKind.VOTE_CAST, voter, data, now)
        warnings += self._record_start(item_id, before, after, voter, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def remove_vote_to_start_auction(
        self,
        voter: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            remaining = self._voting.remove_vote_to_start_auction(voter, item_id, amount, now=now)
        except ValueError as e:
            return self._failure(e)
        data = {"item_id": item_id, "amount": amount, "remaining": remaining}
        return self._success(EventKind.VOTE_REMOVED, voter, data, now)

    def redeem(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._auctions.redeem(caller, item_id, now=now)
        except ValueError as e:
            return self._failure(e)
        return self._success(EventKind.REDEEMED, caller, _redemption_data(result), now)

    def finalize(
        self,
        caller: str,
        item_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._auctions.finalize(item_id, now=now)
        except ValueError as e:
            return self._failure(e)
        return self._success(EventKind.REDEEMED, caller, _redemption_data(result), now)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        claimant: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._claims.claim(claimant, amount)
        except ValueError as e:
            return self._failure(e)
        return self._claimed(result, now)

    def claim_from_epoch(
        self,
        claimant: str,
        amount: int,
        epoch_index: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._claims.claim_from_epoch(claimant, amount, epoch_index)
        except ValueError as e:
            return self._failure(e)
        return self._claimed(result, now)

    def claim_with_locked_fractions(
        self,
        claimant: str,
        item_id: int,
        auction_index: int,
        liquid_amount: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            result = self._claims.claim_with_locked_fractions(
                claimant, item_id, auction_index, liquid_amount,
            )
        except ValueError as e:
            return self._failure(e)
        return self._claimed(result, now, item_id=item_id, auction_index=auction_index)

    def finalize_and_claim(
        self,
        claimant: str,
        item_id: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            pending = self._state.latest_auction(item_id)
            redeemed_before = pending is not None and pending.state == AuctionState.REDEEMED
            result = self._claims.finalize_and_claim(claimant, item_id, amount, now=now)
        except ValueError as e:
            return self._failure(e)
        warnings: list[str] = []
        if not redeemed_before:
            auction = self._state.latest_auction(item_id)
            warnings += self._record(EventKind.REDEEMED, claimant, {
                "item_id": item_id,
                "epoch": auction.epoch,
                "bidder": auction.max_bidder,
                "finalized_by": claimant,
            }, now)
        claimed = self._claimed(result, now, item_id=item_id)
        claimed.warnings = warnings + claimed.warnings
        return claimed

    # ------------------------------------------------------------------
    # Exit price governance
    # ------------------------------------------------------------------

    def update_exit_price(
        self,
        caller: str,
        new_price: int,
        quorum_percent: int,
        vote_duration: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            expiring = self._active_proposal()
            proposal = self._governance.update_exit_price(
                caller, new_price, quorum_percent, vote_duration, now=now,
            )
        except ValueError as e:
            return self._failure(e)

        warnings = self._record_finalized(expiring, caller, now)
        epoch = self._state.current_epoch()
        if proposal is None:
            data = {"epoch": epoch.index, "exit_price": epoch.exit_price, "source": "oracle"}
            warnings += self._record(EventKind.EXIT_PRICE_UPDATED, caller, data, now)
        else:
            data = _proposal_data(proposal)
            warnings += self._record(EventKind.PROPOSAL_CREATED, caller, data, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def vote_on_proposal(
        self,
        voter: str,
        proposal_id: int,
        yes: bool,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            proposal = self._governance.vote_on_proposal(voter, proposal_id, yes, now=now)
        except ValueError as e:
            return self._failure(e)
        data = _proposal_data(proposal)
        if proposal.state != ProposalState.ACTIVE:
            warnings = self._record_finalized(proposal, voter, now)
        else:
            data["yes"] = yes
            warnings = self._record(EventKind.PROPOSAL_VOTED, voter, data, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def remove_vote_on_proposal(self, voter: str, now: Optional[datetime] = None) -> ServiceResult:
        try:
            proposal = self._governance.remove_vote_on_proposal(voter, now=now)
        except ValueError as e:
            return self._failure(e)
        return self._success(EventKind.PROPOSAL_VOTE_REMOVED, voter, _proposal_data(proposal), now)

    def finalize_proposal(self, caller: str, now: Optional[datetime] = None) -> ServiceResult:
        try:
            proposal = self._governance.finalize_proposal(now=now)
        except ValueError as e:
            return self._failure(e)
        if proposal is None:
            return ServiceResult(success=True, data={"finalized": False})
        warnings = self._record_finalized(proposal, caller, now)
        return ServiceResult(success=True, data=_proposal_data(proposal), warnings=warnings)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, holder: str, epoch_index: Optional[int] = None) -> dict[str, int]:
        """Fraction holding in an epoch (current by default) plus exchange balance."""
        balances = {"exchange": self._state.payment_token.balance_of(holder)}
        if not self._state.epochs:
            return balances
        index = len(self._state.epochs) - 1 if epoch_index is None else epoch_index
        holding = self._state.epoch(index).ledger.holding(holder)
        balances.update({
            "liquid": holding.liquid,
            "locked_by_vote": holding.locked_by_vote,
            "locked_by_bid": holding.locked_by_bid,
        })
        return balances

    def status(self) -> dict[str, Any]:
        """Summary of every epoch and every item's latest auction."""
        epochs = [
            {
                "epoch": e.index,
                "items": list(e.items),
                "live_items": sorted(e.live_items),
                "total_supply": e.ledger.total_supply,
                "liquid_supply": e.ledger.liquid_supply,
                "proceeds": e.proceeds,
                "redeemable_supply": e.redeemable_supply,
                "redemptions": e.redemptions,
                "exit_price": e.exit_price,
                "closed": e.closed,
            }
            for e in self._state.epochs
        ]
        auctions = {
            str(item_id): {
                "count": len(history),
                "epoch": history[-1].epoch,
                "state": history[-1].state.value,
                "max_bid": history[-1].max_bid,
                "max_bidder": history[-1].max_bidder,
                "timer": _iso(history[-1].timer),
            }
            for item_id, history in sorted(self._state.auctions.items())
        }
        return {
            "epochs": epochs,
            "auctions": auctions,
            "escrow_balance": self._state.payment_token.balance_of(self._state.escrow_account),
            "invariant_violations": self._state.check_invariants(),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _auction_state(self, item_id: int) -> AuctionState:
        epoch = self._state.current_epoch()
        if epoch is None or item_id not in epoch.live_items:
            return AuctionState.NOT_STARTED
        auction = self._auctions.existing_auction(item_id, epoch)
        return auction.state if auction else AuctionState.NOT_STARTED

    def _active_proposal(self) -> Optional[PriceProposal]:
        epoch = self._state.current_epoch()
        return epoch.active_proposal() if epoch else None

    def _fractionalised(
        self,
        caller: str,
        epoch_index: int,
        item_id: int,
        quantity: int,
        now: Optional[datetime],
        warnings: list[str],
    ) -> ServiceResult:
        epoch = self._state.epoch(epoch_index)
        data = {
            "epoch": epoch_index,
            "item_id": item_id,
            "quantity": quantity,
            "fractions_per_item": epoch.fractions_per_item,
            "total_supply": epoch.ledger.total_supply,
        }
        warnings = warnings + self._record(EventKind.FRACTIONALISED, caller, data, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def _claimed(self, result: ClaimResult, now: Optional[datetime], **extra: int) -> ServiceResult:
        data = {
            "epoch": result.epoch,
            "burned": result.burned,
            "payout": result.payout,
            "locked_payout": result.locked_payout,
            "total_payout": result.total_payout,
            **extra,
        }
        return self._success(EventKind.CLAIMED, result.claimant, data, now)

    def _record_start(
        self,
        item_id: int,
        before: AuctionState,
        after: AuctionState,
        actor_id: str,
        now: Optional[datetime],
    ) -> list[str]:
        if before != AuctionState.NOT_STARTED or after == AuctionState.NOT_STARTED:
            return []
        auction = self._state.latest_auction(item_id)
        return self._record(EventKind.AUCTION_STARTED, actor_id, {
            "item_id": item_id,
            "epoch": auction.epoch,
            "state": after.value,
            "timer": _iso(auction.timer),
        }, now)

    def _record_finalized(
        self,
        proposal: Optional[PriceProposal],
        actor_id: str,
        now: Optional[datetime],
    ) -> list[str]:
        if proposal is None or proposal.state == ProposalState.ACTIVE:
            return []
        return self._record(EventKind.PROPOSAL_FINALIZED, actor_id, _proposal_data(proposal), now)

    def _failure(self, error: ValueError) -> ServiceResult:
        code = getattr(error, "code", type(error).__name__)
        return ServiceResult(success=False, errors=[str(error)], error_code=code)

    def _success(
        self,
        kind: EventKind,
        actor_id: str,
        data: dict[str, Any],
        now: Optional[datetime],
    ) -> ServiceResult:
        warnings = self._record(kind, actor_id, data, now)
        return ServiceResult(success=True, data=data, warnings=warnings)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime],
    ) -> list[str]:
        """Append an audit event. Returns warnings, empty on success."""
        if self._event_log is None:
            return []
        try:
            self._event_log.append(EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=dict(payload),
                timestamp_utc=now or datetime.now(timezone.utc),
            ))
        except (OSError, ValueError) as e:
            logger.warning("Event log write failed for %s: %s", kind.value, e)
            return [f"Audit-trail degraded: {e}"]
        return []


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _proposal_data(proposal: PriceProposal) -> dict[str, Any]:
    return {
        "epoch": proposal.epoch,
        "proposal_id": proposal.proposal_id,
        "new_exit_price": proposal.new_exit_price,
        "quorum_percent": proposal.quorum_percent,
        "vote_end": _iso(proposal.vote_end),
        "yes_votes": proposal.yes_votes,
        "no_votes": proposal.no_votes,
        "state": proposal.state.value,
    }


def _redemption_data(result: RedemptionResult) -> dict[str, Any]:
    return {
        "item_id": result.item_id,
        "epoch": result.epoch,
        "bidder": result.bidder,
        "sale_amount": result.sale_amount,
        "vault_delta": result.vault_delta,
        "royalty": result.royalty,
        "net_proceeds": result.net_proceeds,
        "voter_share": result.voter_share,
        "burned_fractions": result.burned_fractions,
    }
