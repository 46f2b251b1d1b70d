from .fitness import FitnessEvaluator, response_consistency
from .trace_collector import TraceCallback, TraceCollector

__all__ = ["FitnessEvaluator", "TraceCallback", "TraceCollector", "response_consistency"]
