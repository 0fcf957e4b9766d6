"""Fractional co-ownership buyout engine.

Items are locked and split into per-epoch fractions. Holders can force a
sale through a buyout auction, claim their share of the proceeds, and the
item may be fractionalised again in a new epoch.
"""

__version__ = "0.1.0"
