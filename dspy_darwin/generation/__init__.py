from .crossover import CrossoverEngine
from .mutation import InstructionProposer, MutationEngine, apply_mutation_type, parse_suggestions
from .reflection import (
    LMReflection,
    PatternSummary,
    ReflectionEngine,
    ReflectionStrategy,
    analyze_execution_patterns,
    trace_summary,
)

__all__ = [
    "CrossoverEngine",
    "InstructionProposer",
    "MutationEngine",
    "apply_mutation_type",
    "parse_suggestions",
    "LMReflection",
    "PatternSummary",
    "ReflectionEngine",
    "ReflectionStrategy",
    "analyze_execution_patterns",
    "trace_summary",
]
