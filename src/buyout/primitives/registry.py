"""Item ownership registry — who owns each indivisible item, and its state.

Items move through the lifecycle UNVERIFIED → VERIFIED → CHECKED_IN →
CHECKED_OUT. Only VERIFIED items can be fractionalised. Checking an item
out burns its registry entry.

The engine moves items with ``transfer`` after authorising the move itself;
``transfer_from`` is the caller-authorised path for ordinary owners.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Set

from buyout.errors import (
    InsufficientApproval,
    ItemAlreadyExists,
    NonexistentItem,
)


class ItemState(str, enum.Enum):
    """Custody lifecycle state of an item."""
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


@dataclass
class ItemRecord:
    item_id: int
    owner: str
    state: ItemState = ItemState.UNVERIFIED
    approved: Optional[str] = None


class ItemRegistry:
    """In-memory ownership registry for items."""

    def __init__(self) -> None:
        self._items: Dict[int, ItemRecord] = {}
        self._operators: Dict[str, Set[str]] = {}

    def mint(
        self,
        item_id: int,
        owner: str,
        state: ItemState = ItemState.UNVERIFIED,
    ) -> ItemRecord:
        if item_id in self._items:
            raise ItemAlreadyExists(item_id)
        record = ItemRecord(item_id=item_id, owner=owner, state=state)
        self._items[item_id] = record
        return record

    def exists(self, item_id: int) -> bool:
        return item_id in self._items

    def get(self, item_id: int) -> ItemRecord:
        record = self._items.get(item_id)
        if record is None:
            raise NonexistentItem(item_id)
        return record

    def owner_of(self, item_id: int) -> str:
        return self.get(item_id).owner

    def state_of(self, item_id: int) -> ItemState:
        return self.get(item_id).state

    def set_state(self, item_id: int, state: ItemState) -> None:
        """Advance the custody state. CHECKED_OUT burns the item."""
        record = self.get(item_id)
        if state == ItemState.CHECKED_OUT:
            del self._items[item_id]
            return
        record.state = state

    def approve(self, owner: str, operator: Optional[str], item_id: int) -> None:
        record = self.get(item_id)
        if record.owner != owner:
            raise InsufficientApproval(owner, item_id)
        record.approved = operator

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        operators = self._operators.setdefault(owner, set())
        if approved:
            operators.add(operator)
        else:
            operators.discard(operator)

    def is_approved_or_owner(self, caller: str, item_id: int) -> bool:
        record = self.get(item_id)
        return (
            caller == record.owner
            or caller == record.approved
            or caller in self._operators.get(record.owner, set())
        )

    def transfer(self, item_id: int, recipient: str) -> None:
        """Custodial move; authorisation is the caller's responsibility."""
        record = self.get(item_id)
        record.owner = recipient
        record.approved = None

    def transfer_from(self, caller: str, item_id: int, recipient: str) -> None:
        if not self.is_approved_or_owner(caller, item_id):
            raise InsufficientApproval(caller, item_id)
        self.transfer(item_id, recipient)
