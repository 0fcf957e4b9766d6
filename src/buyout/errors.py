"""Named failure conditions for the buyout engine.

Every failed precondition aborts the whole operation with one of these
errors. Each carries the offending values both as attributes and in
``values`` so callers can tell "try a higher bid" apart from "auction over"
apart from "not your token" without parsing messages.

All errors subclass ValueError, matching how the rest of the codebase
reports rejected operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class BuyoutError(ValueError):
    """Base class for every rejected buyout operation."""

    def __init__(self, message: str, **values: Any) -> None:
        super().__init__(message)
        self.values = values
        for key, value in values.items():
            setattr(self, key, value)

    @property
    def code(self) -> str:
        return type(self).__name__


# ----------------------------------------------------------------------
# Generic amounts and balances
# ----------------------------------------------------------------------

class InvalidAmount(BuyoutError):
    def __init__(self, amount: int) -> None:
        super().__init__(f"Amount must be positive, got {amount}", amount=amount)


class InsufficientBalance(BuyoutError):
    """Fraction balance too low for a transfer, lock, burn, or claim."""

    def __init__(self, holder: str, balance: int, required: int) -> None:
        super().__init__(
            f"Insufficient fraction balance for {holder}: "
            f"has {balance}, needs {required}",
            holder=holder, balance=balance, required=required,
        )


class InsufficientLockedBalance(BuyoutError):
    def __init__(self, holder: str, kind: str, locked: int, required: int) -> None:
        super().__init__(
            f"Insufficient {kind}-locked fractions for {holder}: "
            f"has {locked}, needs {required}",
            holder=holder, kind=kind, locked=locked, required=required,
        )


class InsufficientPayment(BuyoutError):
    """Exchange-asset balance too low to cover a payment."""

    def __init__(self, account: str, balance: int, required: int) -> None:
        super().__init__(
            f"Insufficient exchange balance for {account}: "
            f"has {balance}, needs {required}",
            account=account, balance=balance, required=required,
        )


class AccessDenied(BuyoutError):
    def __init__(self, caller: str) -> None:
        super().__init__(f"Access denied for {caller}", caller=caller)


# ----------------------------------------------------------------------
# Ownership registry
# ----------------------------------------------------------------------

class NonexistentItem(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"Item does not exist: {item_id}", item_id=item_id)


class ItemAlreadyExists(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"Item already exists: {item_id}", item_id=item_id)


class InsufficientApproval(BuyoutError):
    def __init__(self, caller: str, item_id: int) -> None:
        super().__init__(
            f"{caller} is neither owner nor approved for item {item_id}",
            caller=caller, item_id=item_id,
        )


class InvalidStateOrCaller(BuyoutError):
    def __init__(self, item_id: int, caller: str, state: Any) -> None:
        state_value = getattr(state, "value", state)
        super().__init__(
            f"Item {item_id} cannot be fractionalised by {caller} "
            f"in state {state_value}",
            item_id=item_id, caller=caller, state=state,
        )


# ----------------------------------------------------------------------
# Fractionalisation
# ----------------------------------------------------------------------

class InvalidLength(BuyoutError):
    def __init__(self, length: int) -> None:
        super().__init__(f"Invalid item quantity: {length}", length=length)


class InitialFractionalisationOnly(BuyoutError):
    def __init__(self, epoch: Optional[int]) -> None:
        super().__init__(
            f"Operation not allowed in the fractionalisation state of epoch {epoch}",
            epoch=epoch,
        )


class InvalidExitPrice(BuyoutError):
    def __init__(self, price: int) -> None:
        super().__init__(f"Exit price must be positive, got {price}", price=price)


class InvalidPercentage(BuyoutError):
    def __init__(self, percentage: int) -> None:
        super().__init__(
            f"Invalid percentage (basis points): {percentage}",
            percentage=percentage,
        )


class InvalidFractionsAmount(BuyoutError):
    def __init__(self, amount: int, minimum: int, maximum: int) -> None:
        super().__init__(
            f"Fractions per item {amount} outside [{minimum}, {maximum}]",
            amount=amount, minimum=minimum, maximum=maximum,
        )


class InvalidPartialAuctionThreshold(BuyoutError):
    def __init__(self, partial_auction_threshold: int, liquidation_threshold: int) -> None:
        super().__init__(
            f"Liquidation threshold {liquidation_threshold} exceeds "
            f"partial auction threshold {partial_auction_threshold}",
            partial_auction_threshold=partial_auction_threshold,
            liquidation_threshold=liquidation_threshold,
        )


class InvalidEpoch(BuyoutError):
    def __init__(self, epoch: int, epoch_count: int) -> None:
        super().__init__(
            f"Epoch {epoch} does not exist ({epoch_count} epochs)",
            epoch=epoch, epoch_count=epoch_count,
        )


class EpochNotActive(BuyoutError):
    def __init__(self, epoch: Optional[int]) -> None:
        super().__init__(f"No open fractionalisation (epoch {epoch})", epoch=epoch)


# ----------------------------------------------------------------------
# Auction
# ----------------------------------------------------------------------

class TokenNotFractionalised(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(
            f"Item {item_id} is not fractionalised in the current epoch",
            item_id=item_id,
        )


class InvalidBid(BuyoutError):
    def __init__(self, item_id: int, price: int, minimal_bid: int) -> None:
        super().__init__(
            f"Bid {price} on item {item_id} is below the minimal bid {minimal_bid}",
            item_id=item_id, price=price, minimal_bid=minimal_bid,
        )


class AuctionEnded(BuyoutError):
    def __init__(self, item_id: int, timer: Optional[datetime]) -> None:
        super().__init__(
            f"Auction for item {item_id} ended at {timer}",
            item_id=item_id, timer=timer,
        )


class AuctionOngoing(BuyoutError):
    def __init__(self, item_id: int, timer: Optional[datetime]) -> None:
        super().__init__(
            f"Auction for item {item_id} is ongoing until {timer}",
            item_id=item_id, timer=timer,
        )


class AuctionReserved(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(
            f"Auction for item {item_id} is reserved by a fully covered bid",
            item_id=item_id,
        )


class AuctionNotStarted(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"Auction for item {item_id} has not started", item_id=item_id)


class AlreadyRedeemed(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"Item {item_id} was already redeemed", item_id=item_id)


class NotMaxBidder(BuyoutError):
    def __init__(self, item_id: int, caller: str, max_bidder: Optional[str]) -> None:
        super().__init__(
            f"{caller} is not the max bidder for item {item_id} (max bidder: {max_bidder})",
            item_id=item_id, caller=caller, max_bidder=max_bidder,
        )


class BidRemovalNotAllowed(BuyoutError):
    def __init__(self, item_id: int, unlock_time: Optional[datetime]) -> None:
        super().__init__(
            f"Bid on item {item_id} is locked until {unlock_time}",
            item_id=item_id, unlock_time=unlock_time,
        )


class NoBids(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(f"No bids on item {item_id}", item_id=item_id)


class BidBelowExitPrice(BuyoutError):
    def __init__(self, item_id: int, max_bid: int, exit_price: int) -> None:
        super().__init__(
            f"Max bid {max_bid} on item {item_id} is below the exit price {exit_price}",
            item_id=item_id, max_bid=max_bid, exit_price=exit_price,
        )


class InvalidAuctionIndex(BuyoutError):
    def __init__(self, item_id: int, index: int, auction_count: int) -> None:
        super().__init__(
            f"Auction index {index} out of range for item {item_id} "
            f"({auction_count} auctions)",
            item_id=item_id, index=index, auction_count=auction_count,
        )


# ----------------------------------------------------------------------
# Voting to start an auction
# ----------------------------------------------------------------------

class MaxBidderCannotVote(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(
            f"The max bidder cannot vote on item {item_id}", item_id=item_id,
        )


class NotEnoughLockedVotes(BuyoutError):
    def __init__(self, item_id: int, requested: int, locked: int) -> None:
        super().__init__(
            f"Cannot remove {requested} votes on item {item_id}: only {locked} locked",
            item_id=item_id, requested=requested, locked=locked,
        )


class NoFractionsAvailable(BuyoutError):
    def __init__(self, item_id: int) -> None:
        super().__init__(
            f"All fractions of item {item_id} are already locked", item_id=item_id,
        )


# ----------------------------------------------------------------------
# Claims
# ----------------------------------------------------------------------

class NoFractions(BuyoutError):
    def __init__(self, epoch: Optional[int]) -> None:
        super().__init__(f"Nothing available to claim in epoch {epoch}", epoch=epoch)


# ----------------------------------------------------------------------
# Governance and oracles
# ----------------------------------------------------------------------

class OnlyFractionOwner(BuyoutError):
    def __init__(self, caller: str) -> None:
        super().__init__(f"{caller} holds no fractions", caller=caller)


class InvalidVoteDuration(BuyoutError):
    def __init__(self, duration: int, minimum: int, maximum: int) -> None:
        super().__init__(
            f"Vote duration {duration}s outside [{minimum}, {maximum}]",
            duration=duration, minimum=minimum, maximum=maximum,
        )


class ProposalAlreadyActive(BuyoutError):
    def __init__(self, proposal_id: int) -> None:
        super().__init__(
            f"Proposal {proposal_id} is still active", proposal_id=proposal_id,
        )


class InvalidProposalId(BuyoutError):
    def __init__(self, proposal_id: int) -> None:
        super().__init__(f"Unknown proposal: {proposal_id}", proposal_id=proposal_id)


class ProposalNotActive(BuyoutError):
    def __init__(self, proposal_id: Optional[int]) -> None:
        super().__init__(
            f"Proposal {proposal_id} is not active", proposal_id=proposal_id,
        )


class VotingPeriodEnded(BuyoutError):
    def __init__(self, proposal_id: int, deadline: datetime) -> None:
        super().__init__(
            f"Voting on proposal {proposal_id} ended at {deadline}",
            proposal_id=proposal_id, deadline=deadline,
        )


class ConflictingVote(BuyoutError):
    def __init__(self, proposal_id: int, voter: str) -> None:
        super().__init__(
            f"{voter} already voted the other way on proposal {proposal_id}",
            proposal_id=proposal_id, voter=voter,
        )


class AlreadyVoted(BuyoutError):
    def __init__(self, proposal_id: int, voter: str) -> None:
        super().__init__(
            f"{voter} has no additional weight to add on proposal {proposal_id}",
            proposal_id=proposal_id, voter=voter,
        )


class NoVotingPower(BuyoutError):
    def __init__(self, voter: str) -> None:
        super().__init__(f"{voter} has no voting power", voter=voter)


class NoVoteToRemove(BuyoutError):
    def __init__(self, voter: str) -> None:
        super().__init__(f"{voter} has no vote on the active proposal", voter=voter)


class InvalidIdentifier(BuyoutError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Invalid oracle identifier: {identifier!r}", identifier=identifier)


class OracleAlreadyApproved(BuyoutError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Oracle already approved: {identifier}", identifier=identifier)


class OracleNotApproved(BuyoutError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Oracle not approved: {identifier}", identifier=identifier)


class OracleReturnedInvalidPrice(BuyoutError):
    def __init__(self, identifier: str) -> None:
        super().__init__(
            f"Oracle {identifier} did not return a valid price", identifier=identifier,
        )


class OracleUnavailable(Exception):
    """Raised by a price oracle that cannot report a price right now.

    Not a BuyoutError: oracle unavailability is recoverable and triggers
    the governance fallback rather than aborting the call.
    """
