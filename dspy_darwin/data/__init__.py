from .candidate import Candidate, ScoreVector, OBJECTIVES
from .population import Population
from .reflection import ReflectionResult
from .result import OptimizationResult, OptimizationStatus
from .trace import ExecutionTrace, MODEL_CALL, INTERNAL

__all__ = [
    "Candidate",
    "ScoreVector",
    "OBJECTIVES",
    "Population",
    "ReflectionResult",
    "OptimizationResult",
    "OptimizationStatus",
    "ExecutionTrace",
    "MODEL_CALL",
    "INTERNAL",
]
