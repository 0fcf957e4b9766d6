"""Price oracle registry.

Epochs may name a price oracle by identifier at fractionalisation time.
Only approved oracles can be named, and an oracle is approved only if it
returns a valid price when added.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from buyout.collaborators import PriceOracle
from buyout.errors import (
    InvalidIdentifier,
    OracleAlreadyApproved,
    OracleNotApproved,
    OracleReturnedInvalidPrice,
    OracleUnavailable,
)

logger = logging.getLogger(__name__)


class PriceOracleRegistry:
    """Approved price oracles keyed by identifier.

    Usage:
        registry = PriceOracleRegistry()
        registry.add_price_oracle(StaticPriceOracle(10**17), "eur-index")
        oracle = registry.get("eur-index")
    """

    def __init__(self) -> None:
        self._oracles: Dict[str, PriceOracle] = {}

    def add_price_oracle(self, oracle: PriceOracle, identifier: str) -> None:
        if not identifier or not identifier.strip():
            raise InvalidIdentifier(identifier)
        if identifier in self._oracles:
            raise OracleAlreadyApproved(identifier)
        try:
            price, valid = oracle.read_price()
        except OracleUnavailable:
            raise OracleReturnedInvalidPrice(identifier) from None
        if not valid or price <= 0:
            raise OracleReturnedInvalidPrice(identifier)
        self._oracles[identifier] = oracle
        logger.info("Price oracle approved: %s", identifier)

    def remove_price_oracle(self, identifier: str) -> None:
        if identifier not in self._oracles:
            raise OracleNotApproved(identifier)
        del self._oracles[identifier]
        logger.info("Price oracle removed: %s", identifier)

    def is_approved(self, identifier: str) -> bool:
        return identifier in self._oracles

    def get(self, identifier: Optional[str]) -> Optional[PriceOracle]:
        if identifier is None:
            return None
        return self._oracles.get(identifier)

    def identifiers(self) -> List[str]:
        return sorted(self._oracles)
