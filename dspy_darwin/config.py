"""Configuration objects for the GEPA optimizer.

``GEPAConfig`` is frozen: a run reads it once and never changes it. Construction
accepts any values so that ``GEPA.compile`` can turn a bad configuration into an
Error Recovery result instead of raising; call ``validate()`` to check it.
"""

from dataclasses import dataclass, fields, replace as dataclass_replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError


class MutationType(Enum):
    """Deterministic instruction operators the mutation engine understands."""
    REWRITE = "rewrite"
    EXPAND = "expand"
    SIMPLIFY = "simplify"
    COMBINE = "combine"
    REPHRASE = "rephrase"

    @classmethod
    def parse(cls, value: str) -> Optional['MutationType']:
        """Return the mutation type named by ``value`` or None."""
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return None


@dataclass(frozen=True)
class GEPAConfig:
    """Configuration for a GEPA run.

    Usage:
        config = GEPAConfig(reflection_lm=dspy.LM("openai/gpt-4o"), num_generations=5)
        optimizer = GEPA(metric=exact_match, config=config)
    """

    reflection_lm: Optional[Any] = None
    """LM used for reflection and paraphrasing (None = ``dspy.settings.lm``)."""

    num_generations: int = 10
    population_size: int = 8

    mutation_rate: float = 0.7
    """Per-slot probability of rewriting an instruction."""

    crossover_rate: float = 0.6
    """Probability that a pair of parents is recombined rather than cloned."""

    use_pareto_selection: bool = True
    target_score: Optional[float] = None
    """Stop early once the best primary score reaches this value."""

    max_failure_rate: float = 0.5
    """Fraction of failed examples above which a candidate's fitness floors to zero."""

    num_threads: Optional[int] = None
    seed: Optional[int] = None
    reflection_trace_samples: int = 3

    # Secondary objective baselines
    token_baseline: float = 100.0
    latency_baseline: float = 2.0
    primary_weight: float = 0.7

    def validate(self) -> 'GEPAConfig':
        """Check every field, raising ConfigurationError listing all violations."""
        errors: List[str] = []

        if not _is_int(self.num_generations) or self.num_generations <= 0:
            errors.append(f"num_generations must be a positive integer, got {self.num_generations!r}")
        if not _is_int(self.population_size) or self.population_size <= 0:
            errors.append(f"population_size must be a positive integer, got {self.population_size!r}")

        for name in ("mutation_rate", "crossover_rate", "max_failure_rate", "primary_weight"):
            value = getattr(self, name)
            if not _is_unit_interval(value):
                errors.append(f"{name} must be within [0, 1], got {value!r}")

        if self.target_score is not None and not _is_unit_interval(self.target_score):
            errors.append(f"target_score must be within [0, 1] or None, got {self.target_score!r}")

        if self.num_threads is not None and (not _is_int(self.num_threads) or self.num_threads <= 0):
            errors.append(f"num_threads must be a positive integer or None, got {self.num_threads!r}")
        if not _is_int(self.reflection_trace_samples) or self.reflection_trace_samples < 0:
            errors.append("reflection_trace_samples must be a non-negative integer")

        for name in ("token_baseline", "latency_baseline"):
            value = getattr(self, name)
            if not _is_number(value) or value <= 0:
                errors.append(f"{name} must be positive, got {value!r}")

        if errors:
            raise ConfigurationError("Invalid GEPA configuration: " + "; ".join(errors))
        return self

    def replace(self, **overrides) -> 'GEPAConfig':
        """Return a copy with the given fields replaced."""
        return dataclass_replace(self, **overrides)

    @property
    def selection_strategy(self) -> str:
        return "pareto" if self.use_pareto_selection else "fitness_truncation"

    @property
    def reflection_model_name(self) -> str:
        return lm_name(self.reflection_lm)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["reflection_lm"] = self.reflection_model_name
        return data

    @classmethod
    def for_quick_experiments(cls, **overrides) -> 'GEPAConfig':
        """Small population and few generations for fast iteration."""
        defaults = {
            'num_generations': 3,
            'population_size': 4,
            'reflection_trace_samples': 2,
        }
        defaults.update(overrides)
        return cls(**defaults)

    @classmethod
    def for_production(cls, **overrides) -> 'GEPAConfig':
        """Larger search with early stopping on a near-perfect score."""
        defaults = {
            'num_generations': 20,
            'population_size': 12,
            'target_score': 0.98,
            'reflection_trace_samples': 5,
        }
        defaults.update(overrides)
        return cls(**defaults)


def lm_name(lm: Optional[Any]) -> str:
    """Best-effort model name for an LM object."""
    if lm is None:
        return "default"
    model = getattr(lm, "model", None)
    return str(model) if model else lm.__class__.__name__


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_unit_interval(value: Any) -> bool:
    return _is_number(value) and 0.0 <= value <= 1.0
