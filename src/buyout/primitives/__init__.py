"""Ownership registry and exchange-asset primitives.

Conventional item-registry and balance-ledger building blocks that the
buyout engine layers its auction logic on top of.
"""

from buyout.primitives.payment_token import PaymentToken
from buyout.primitives.registry import ItemRecord, ItemRegistry, ItemState

__all__ = ["ItemRecord", "ItemRegistry", "ItemState", "PaymentToken"]
