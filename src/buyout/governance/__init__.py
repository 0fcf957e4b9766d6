from buyout.governance.oracle_registry import PriceOracleRegistry
from buyout.governance.price import PriceGovernance

__all__ = ["PriceGovernance", "PriceOracleRegistry"]
