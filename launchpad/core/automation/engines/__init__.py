from .evaporation import EvaporationEngine
from .harvest import TideHarvestEngine
from .pour import PourRateEngine

__all__ = ["EvaporationEngine", "PourRateEngine", "TideHarvestEngine"]
