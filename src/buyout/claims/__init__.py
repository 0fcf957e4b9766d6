from buyout.claims.distribution import ClaimEngine

__all__ = ["ClaimEngine"]
