"""Core data models for the buyout engine."""

from buyout.models.auction import (
    HUNDRED_PERCENT,
    Auction,
    AuctionParameters,
    AuctionState,
    AuctionVotes,
    VaultParameters,
)
from buyout.models.epoch import Epoch
from buyout.models.governance import PriceProposal, ProposalState, ProposalVote

__all__ = [
    "HUNDRED_PERCENT",
    "Auction",
    "AuctionParameters",
    "AuctionState",
    "AuctionVotes",
    "Epoch",
    "PriceProposal",
    "ProposalState",
    "ProposalVote",
    "VaultParameters",
]
