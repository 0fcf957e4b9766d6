"""Per-epoch fraction balances."""

from buyout.ledger.fraction_ledger import FractionLedger, HolderBalance, LockKind

__all__ = ["FractionLedger", "HolderBalance", "LockKind"]
