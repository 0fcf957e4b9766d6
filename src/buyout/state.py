"""Shared protocol state — epochs, per-item auction history, primitives.

Every engine operates on the same ProtocolState instance. Auctions are kept
as an append-only list per item so past auctions stay addressable by index
after the item is re-fractionalised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from buyout.errors import InvalidEpoch
from buyout.models.auction import Auction
from buyout.models.epoch import Epoch
from buyout.primitives.payment_token import PaymentToken
from buyout.primitives.registry import ItemRegistry

DEFAULT_ESCROW_ACCOUNT = "protocol:escrow"


@dataclass
class ProtocolState:
    registry: ItemRegistry = field(default_factory=ItemRegistry)
    payment_token: PaymentToken = field(default_factory=PaymentToken)
    escrow_account: str = DEFAULT_ESCROW_ACCOUNT
    epochs: List[Epoch] = field(default_factory=list)
    auctions: Dict[int, List[Auction]] = field(default_factory=dict)

    def current_epoch(self) -> Optional[Epoch]:
        return self.epochs[-1] if self.epochs else None

    def epoch(self, index: int) -> Epoch:
        if not 0 <= index < len(self.epochs):
            raise InvalidEpoch(index, len(self.epochs))
        return self.epochs[index]

    def item_auctions(self, item_id: int) -> List[Auction]:
        return self.auctions.get(item_id, [])

    def latest_auction(self, item_id: int) -> Optional[Auction]:
        history = self.auctions.get(item_id)
        return history[-1] if history else None

    def check_invariants(self) -> List[str]:
        """Ledger invariants across every epoch."""
        errors: List[str] = []
        for epoch in self.epochs:
            errors.extend(epoch.ledger.check_invariants())
        return errors
