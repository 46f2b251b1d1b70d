from .pareto import ParetoSelector

__all__ = ["ParetoSelector"]
