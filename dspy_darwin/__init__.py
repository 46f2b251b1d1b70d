"""Reflective genetic-Pareto (GEPA) instruction optimization for DSPy programs."""

from .config import GEPAConfig, MutationType
from .data import (
    Candidate,
    ExecutionTrace,
    OptimizationResult,
    OptimizationStatus,
    Population,
    ReflectionResult,
    ScoreVector,
)
from .engine import GenerationStats, GeneticEngine
from .evaluation import FitnessEvaluator, TraceCallback, TraceCollector
from .exceptions import (
    ConfigurationError,
    EvaluationError,
    FatalEngineError,
    GEPAError,
    ReflectionError,
)
from .generation import (
    CrossoverEngine,
    InstructionProposer,
    LMReflection,
    MutationEngine,
    ReflectionEngine,
    ReflectionStrategy,
)
from .optimizer import GEPA
from .selection import ParetoSelector

__all__ = [
    "GEPA",
    "GEPAConfig",
    "MutationType",
    "Candidate",
    "ExecutionTrace",
    "OptimizationResult",
    "OptimizationStatus",
    "Population",
    "ReflectionResult",
    "ScoreVector",
    "GenerationStats",
    "GeneticEngine",
    "FitnessEvaluator",
    "TraceCallback",
    "TraceCollector",
    "ConfigurationError",
    "EvaluationError",
    "FatalEngineError",
    "GEPAError",
    "ReflectionError",
    "CrossoverEngine",
    "InstructionProposer",
    "LMReflection",
    "MutationEngine",
    "ReflectionEngine",
    "ReflectionStrategy",
    "ParetoSelector",
]
