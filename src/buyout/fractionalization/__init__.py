from buyout.fractionalization.manager import FractionalizationManager

__all__ = ["FractionalizationManager"]
