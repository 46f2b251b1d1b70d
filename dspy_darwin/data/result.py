"""Final result of a GEPA run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class OptimizationStatus(Enum):
    SUCCESS = "Complete Implementation"
    RECOVERED = "Error Recovery"


@dataclass(frozen=True)
class OptimizationResult:
    """Produced exactly once per ``compile`` call.

    Check ``status`` (or ``metadata["implementation_status"]``) to tell a full
    run from one that fell back to the original program.
    """
    optimized_program: Any
    best_score_value: float
    scores: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    history: Dict[str, Any] = field(default_factory=dict)
    best_score_name: str = "primary_score"

    @property
    def status(self) -> OptimizationStatus:
        return OptimizationStatus(self.metadata.get("implementation_status", OptimizationStatus.SUCCESS.value))

    @property
    def succeeded(self) -> bool:
        return self.status is OptimizationStatus.SUCCESS

    @property
    def error(self) -> Optional[str]:
        return self.history.get("error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_score_name": self.best_score_name,
            "best_score_value": self.best_score_value,
            "scores": dict(self.scores),
            "metadata": dict(self.metadata),
            "history": dict(self.history),
        }
