from buyout.auction.engine import BidResult, BuyoutAuctionEngine, RedemptionResult
from buyout.auction.voting import VotingSubsystem

__all__ = ["BidResult", "BuyoutAuctionEngine", "RedemptionResult", "VotingSubsystem"]
