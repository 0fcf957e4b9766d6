"""Governance price module — changes an epoch's exit price.

If the epoch names an approved oracle that returns a valid price, the exit
price follows the oracle at once. Otherwise (no oracle, oracle
unavailable, invalid price) a proposal is opened and fraction holders vote
on it, weighted by liquid balance.

Proposal lifecycle:
    ACTIVE → EXECUTED   (deadline passed, quorum met, yes > no)
    ACTIVE → FAILED     (deadline passed otherwise)

Deadlines are evaluated lazily: the next call touching an expired proposal
finalises it. Quorum is measured against the epoch's liquid supply at
finalisation time.

Committed weight can never exceed what the voter still holds: the ledger
calls ``adjust_votes_on_transfer`` after every debit, which trims the
voter's weight down to the remaining liquid balance.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from buyout.errors import (
    AlreadyVoted,
    ConflictingVote,
    EpochNotActive,
    InvalidExitPrice,
    InvalidPercentage,
    InvalidProposalId,
    InvalidVoteDuration,
    NoVoteToRemove,
    NoVotingPower,
    OnlyFractionOwner,
    OracleUnavailable,
    ProposalAlreadyActive,
    ProposalNotActive,
    VotingPeriodEnded,
)
from buyout.governance.oracle_registry import PriceOracleRegistry
from buyout.ledger.fraction_ledger import FractionLedger
from buyout.models.auction import HUNDRED_PERCENT
from buyout.models.epoch import Epoch
from buyout.models.governance import PriceProposal, ProposalState, ProposalVote
from buyout.policy.resolver import PolicyResolver
from buyout.state import ProtocolState

logger = logging.getLogger(__name__)


class PriceGovernance:
    """Oracle-first exit price updates with a proposal fallback.

    Usage:
        governance = PriceGovernance(resolver, state, oracle_registry)
        proposal = governance.update_exit_price("alice", 5 * 10**16, 5000, 0, now=t0)
        governance.vote_on_proposal("bob", proposal.proposal_id, True, now=t0)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        state: ProtocolState,
        oracle_registry: Optional[PriceOracleRegistry] = None,
    ) -> None:
        self._state = state
        self._oracles = oracle_registry or PriceOracleRegistry()
        self._bounds = resolver.governance_bounds()

    def update_exit_price(
        self,
        caller: str,
        new_price: int,
        quorum_percent: int,
        vote_duration: int = 0,
        now: Optional[datetime] = None,
    ) -> Optional[PriceProposal]:
        """Apply the oracle price, or open a proposal for ``new_price``.

        Returns None when the oracle price was applied, else the new proposal.
        A zero ``vote_duration`` means the configured default.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self._open_epoch()
        if epoch.ledger.balance_of(caller) <= 0:
            raise OnlyFractionOwner(caller)

        oracle_price = self._read_oracle(epoch)
        if oracle_price is not None:
            epoch.auction_parameters.exit_price = oracle_price
            logger.info("Epoch %d exit price set by oracle: %d", epoch.index, oracle_price)
            return None

        if new_price <= 0:
            raise InvalidExitPrice(new_price)
        bounds = self._bounds
        if not bounds.min_quorum <= quorum_percent <= bounds.max_quorum:
            raise InvalidPercentage(quorum_percent)
        duration = vote_duration or bounds.default_vote_duration
        if not bounds.min_vote_duration <= duration <= bounds.max_vote_duration:
            raise InvalidVoteDuration(
                duration, bounds.min_vote_duration, bounds.max_vote_duration,
            )

        self._finalize_expired(epoch, now)
        active = epoch.active_proposal()
        if active is not None:
            raise ProposalAlreadyActive(active.proposal_id)

        proposal = PriceProposal(
            proposal_id=len(epoch.proposals) + 1,
            epoch=epoch.index,
            proposer=caller,
            new_exit_price=new_price,
            quorum_percent=quorum_percent,
            vote_end=now + timedelta(seconds=duration),
            created_utc=now,
        )
        epoch.proposals.append(proposal)
        logger.info(
            "Epoch %d price proposal %d opened by %s: %d (quorum %d bps, ends %s)",
            epoch.index, proposal.proposal_id, caller, new_price, quorum_percent,
            proposal.vote_end.isoformat(),
        )
        return proposal

    def vote_on_proposal(
        self,
        voter: str,
        proposal_id: int,
        yes: bool,
        now: Optional[datetime] = None,
    ) -> PriceProposal:
        """Commit the voter's liquid balance to a proposal.

        Voting again in the same direction tops the weight up to the current
        balance. After the deadline the call finalises the proposal instead.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self._open_epoch()
        proposal = epoch.proposal(proposal_id)
        if proposal is None:
            raise InvalidProposalId(proposal_id)
        if proposal.state != ProposalState.ACTIVE:
            raise ProposalNotActive(proposal_id)
        if now > proposal.vote_end:
            self._finalize(epoch, proposal, now)
            return proposal

        existing = self._vote_of(epoch, voter, proposal)
        if existing is not None and existing.yes != yes:
            raise ConflictingVote(proposal_id, voter)
        committed = existing.amount if existing else 0
        balance = epoch.ledger.balance_of(voter)
        if balance <= 0 and not committed:
            raise NoVotingPower(voter)
        additional = balance - committed
        if additional <= 0:
            raise AlreadyVoted(proposal_id, voter)

        if yes:
            proposal.yes_votes += additional
        else:
            proposal.no_votes += additional
        epoch.proposal_votes[voter] = ProposalVote(proposal_id, balance, yes)
        logger.debug(
            "Proposal %d vote by %s: %s +%d", proposal_id, voter, "yes" if yes else "no", additional,
        )
        return proposal

    def remove_vote_on_proposal(
        self,
        voter: str,
        now: Optional[datetime] = None,
    ) -> PriceProposal:
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self._open_epoch()
        proposal = epoch.active_proposal()
        if proposal is None:
            raise ProposalNotActive(None)
        if now > proposal.vote_end:
            raise VotingPeriodEnded(proposal.proposal_id, proposal.vote_end)
        vote = self._vote_of(epoch, voter, proposal)
        if vote is None:
            raise NoVoteToRemove(voter)

        self._retract(proposal, vote, vote.amount)
        del epoch.proposal_votes[voter]
        logger.debug("Proposal %d vote removed by %s", proposal.proposal_id, voter)
        return proposal

    def adjust_votes_on_transfer(self, ledger: FractionLedger, holder: str, amount: int) -> None:
        """Ledger debit hook: cap the holder's committed weight at their balance."""
        if ledger.epoch >= len(self._state.epochs):
            return
        epoch = self._state.epochs[ledger.epoch]
        vote = epoch.proposal_votes.get(holder)
        if vote is None:
            return
        proposal = epoch.proposal(vote.proposal_id)
        if proposal is None or proposal.state != ProposalState.ACTIVE:
            return
        remaining = ledger.balance_of(holder)
        if vote.amount <= remaining:
            return

        self._retract(proposal, vote, vote.amount - remaining)
        if remaining:
            vote.amount = remaining
        else:
            del epoch.proposal_votes[holder]
        logger.debug(
            "Proposal %d weight of %s trimmed to %d after debit of %d",
            proposal.proposal_id, holder, remaining, amount,
        )

    def finalize_proposal(self, now: Optional[datetime] = None) -> Optional[PriceProposal]:
        """Finalise the active proposal if its deadline has passed.

        Returns the finalised proposal, or None while voting is still open.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        epoch = self._open_epoch()
        proposal = epoch.active_proposal()
        if proposal is None:
            raise ProposalNotActive(None)
        if now <= proposal.vote_end:
            return None
        self._finalize(epoch, proposal, now)
        return proposal

    def get_proposal(self, proposal_id: int, epoch_index: Optional[int] = None) -> PriceProposal:
        epoch = self._open_epoch() if epoch_index is None else self._state.epoch(epoch_index)
        proposal = epoch.proposal(proposal_id)
        if proposal is None:
            raise InvalidProposalId(proposal_id)
        return proposal

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open_epoch(self) -> Epoch:
        epoch = self._state.current_epoch()
        if epoch is None or epoch.closed:
            raise EpochNotActive(epoch.index if epoch else None)
        return epoch

    def _read_oracle(self, epoch: Epoch) -> Optional[int]:
        oracle = self._oracles.get(epoch.price_oracle)
        if oracle is None:
            return None
        try:
            price, valid = oracle.read_price()
        except OracleUnavailable as exc:
            logger.warning(
                "Oracle %s unavailable, falling back to governance: %s",
                epoch.price_oracle, exc,
            )
            return None
        if not valid or price <= 0:
            logger.warning(
                "Oracle %s returned an invalid price, falling back to governance",
                epoch.price_oracle,
            )
            return None
        return price

    @staticmethod
    def _vote_of(epoch: Epoch, voter: str, proposal: PriceProposal) -> Optional[ProposalVote]:
        vote = epoch.proposal_votes.get(voter)
        if vote is None or vote.proposal_id != proposal.proposal_id:
            return None
        return vote

    @staticmethod
    def _retract(proposal: PriceProposal, vote: ProposalVote, amount: int) -> None:
        if vote.yes:
            proposal.yes_votes -= amount
        else:
            proposal.no_votes -= amount

    def _finalize_expired(self, epoch: Epoch, now: datetime) -> None:
        active = epoch.active_proposal()
        if active is not None and now > active.vote_end:
            self._finalize(epoch, active, now)

    def _finalize(self, epoch: Epoch, proposal: PriceProposal, now: datetime) -> None:
        quorum_met = (
            proposal.total_votes * HUNDRED_PERCENT
            >= proposal.quorum_percent * epoch.ledger.liquid_supply
        )
        if quorum_met and proposal.yes_votes > proposal.no_votes:
            proposal.state = ProposalState.EXECUTED
            epoch.auction_parameters.exit_price = proposal.new_exit_price
        else:
            proposal.state = ProposalState.FAILED
        proposal.finalized_utc = now
        logger.info(
            "Epoch %d price proposal %d %s (yes %d, no %d)",
            epoch.index, proposal.proposal_id, proposal.state.value,
            proposal.yes_votes, proposal.no_votes,
        )
