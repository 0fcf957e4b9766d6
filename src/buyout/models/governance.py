"""Exit-price governance models."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class ProposalState(str, enum.Enum):
    ACTIVE = "active"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class PriceProposal:
    """A fraction-weighted proposal to change an epoch's exit price.

    Mutable — tallies move as holders vote, and state is set on
    finalisation.
    """
    proposal_id: int
    epoch: int
    proposer: str
    new_exit_price: int
    quorum_percent: int
    vote_end: datetime
    created_utc: datetime
    yes_votes: int = 0
    no_votes: int = 0
    state: ProposalState = ProposalState.ACTIVE
    finalized_utc: Optional[datetime] = None

    @property
    def total_votes(self) -> int:
        return self.yes_votes + self.no_votes


@dataclass
class ProposalVote:
    """A holder's committed weight on a proposal."""
    proposal_id: int
    amount: int
    yes: bool
