"""Epoch model — one fractionalisation generation.

An epoch owns its own fraction ledger, auction parameters and proceeds
pool. ``proceeds`` and ``redeemable_supply`` grow with every redemption by
the sold item's holder share and shrink with every claim. An epoch is never
destroyed: once every item in it is redeemed it is closed and becomes
read-only history for claims.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from buyout.ledger.fraction_ledger import FractionLedger
from buyout.models.auction import AuctionParameters, VaultParameters
from buyout.models.governance import PriceProposal, ProposalState, ProposalVote


@dataclass
class Epoch:
    index: int
    ledger: FractionLedger
    auction_parameters: AuctionParameters
    vault_parameters: VaultParameters
    fractions_per_item: int
    created_utc: datetime
    price_oracle: Optional[str] = None
    items: List[int] = field(default_factory=list)
    live_items: Set[int] = field(default_factory=set)
    additional_minted: int = 0
    proceeds: int = 0
    redeemable_supply: int = 0
    redemptions: int = 0
    proposals: List[PriceProposal] = field(default_factory=list)
    proposal_votes: Dict[str, ProposalVote] = field(default_factory=dict)

    @property
    def closed(self) -> bool:
        return bool(self.items) and not self.live_items

    @property
    def exit_price(self) -> int:
        return self.auction_parameters.exit_price

    def item_share(self) -> int:
        """Fractions that stand for one item, including custodian dilution."""
        minted_for_items = self.fractions_per_item * len(self.items)
        if not minted_for_items:
            return self.fractions_per_item
        return (
            self.fractions_per_item * (minted_for_items + self.additional_minted)
            // minted_for_items
        )

    def active_proposal(self) -> Optional[PriceProposal]:
        if self.proposals and self.proposals[-1].state == ProposalState.ACTIVE:
            return self.proposals[-1]
        return None

    def proposal(self, proposal_id: int) -> Optional[PriceProposal]:
        if 1 <= proposal_id <= len(self.proposals):
            return self.proposals[proposal_id - 1]
        return None
