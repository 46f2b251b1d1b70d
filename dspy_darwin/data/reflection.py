"""Structured output of one reflection pass."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

HIGH_CONFIDENCE = 0.8


@dataclass(frozen=True)
class ReflectionResult:
    trace_id: str
    diagnosis: str
    improvements: List[str] = field(default_factory=list)
    confidence: float = 0.0
    suggested_mutations: List[str] = field(default_factory=list)
    reasoning: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def empty(cls, trace_id: str, model: Optional[str] = None) -> 'ReflectionResult':
        return cls(
            trace_id=trace_id,
            diagnosis="No traces available for analysis",
            confidence=0.0,
            metadata={"model": model, "timestamp": time.time(), "trace_count": 0},
        )

    def is_high_confidence(self, threshold: float = HIGH_CONFIDENCE) -> bool:
        return self.confidence >= threshold

    def is_actionable(self) -> bool:
        return bool(self.improvements or self.suggested_mutations)

    def summary(self) -> str:
        return (
            f"Reflection {self.trace_id}: confidence {self.confidence:.2f}, "
            f"{len(self.improvements)} improvements, {len(self.suggested_mutations)} suggested mutations. "
            f"{self.diagnosis[:200]}"
        )

    def insights(self) -> Dict[str, Any]:
        """The subset reported in an optimization result."""
        return {
            "diagnosis": self.diagnosis,
            "improvements": list(self.improvements),
            "confidence": self.confidence,
            "suggested_mutations": list(self.suggested_mutations),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.insights()
        data.update({"trace_id": self.trace_id, "reasoning": self.reasoning, "metadata": dict(self.metadata)})
        return data
