"""Population data structure for GEPA optimization."""

import random
from typing import Any, Callable, Dict, Iterable, List, Optional

from .candidate import Candidate


class Population:
    """The candidates of one generation, in insertion order.

    Features passed as keyword arguments (callables, dicts, sequences or
    constants) become weights for ``sample_stochastic``.
    """

    def __init__(self, *candidates: Candidate, generation: int = 0, **stochastic_weights):
        # Handle both Population(c1, c2) and Population([c1, c2])
        if len(candidates) == 1 and isinstance(candidates[0], (list, tuple)):
            candidates = tuple(candidates[0])
        self.candidates: List[Candidate] = list(candidates)
        self.generation: int = generation
        self.weights: Dict[str, Dict[Candidate, float]] = {}
        for name, feature in stochastic_weights.items():
            self.weights[name] = self._extract_feature_values(feature)

    def _extract_feature_values(self, feature_spec: Any) -> Dict[Candidate, float]:
        """Internal helper to resolve a feature specification into per-candidate values."""
        if isinstance(feature_spec, dict):
            return {c: float(feature_spec.get(c, 0.0)) for c in self.candidates}
        if callable(feature_spec):
            return {c: float(feature_spec(c)) for c in self.candidates}
        if isinstance(feature_spec, (list, tuple)):
            if len(feature_spec) != len(self.candidates):
                raise ValueError(
                    f"Sequence feature has length {len(feature_spec)} but population has "
                    f"{len(self.candidates)} candidates. They must match."
                )
            return {c: float(value) for c, value in zip(self.candidates, feature_spec)}
        if isinstance(feature_spec, (int, float)):
            return {c: float(feature_spec) for c in self.candidates}

        raise TypeError(f"Unsupported feature specification type: {type(feature_spec)}")

    def add_feature(self, name: str, values):
        self.weights[name] = self._extract_feature_values(values)

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self):
        return len(self.candidates)

    def __contains__(self, candidate: Candidate) -> bool:
        return candidate in self.candidates

    def size(self) -> int:
        return len(self.candidates)

    def is_empty(self) -> bool:
        return not self.candidates

    def to_list(self) -> List[Candidate]:
        return list(self.candidates)

    def combine(self, other: Iterable[Candidate]) -> 'Population':
        """Population + offspring pool, before selection shrinks it again."""
        return Population(self.candidates + list(other), generation=self.generation)

    def sample_stochastic(self, n: int = 1, exclude: Optional[List[Candidate]] = None,
                          rng=random, **factors) -> List[Candidate]:
        """Sample ``n`` candidates (with replacement) with probability proportional to
        the weighted sum of the population's features.

        Args:
            n: Number of candidates to draw
            exclude: Candidates that may not be drawn
            **factors: Multipliers for features given at construction (default 1.0)

        Returns:
            List of sampled candidates
        """
        exclude = exclude or []
        candidates = [c for c in self.candidates if c not in exclude]
        if not candidates:
            return []

        factors = {key: factors.get(key, 1.0) for key in self.weights}
        final_weights = [0.0] * len(candidates)
        for feature, weights in self.weights.items():
            for i, candidate in enumerate(candidates):
                final_weights[i] += max(weights.get(candidate, 0.0) * factors[feature], 0.0)

        if sum(final_weights) == 0:
            final_weights = [1.0] * len(candidates)

        return rng.choices(candidates, weights=final_weights, k=n)

    def best(self, key: Callable[[Candidate], Any] = lambda c: (c.primary_score, c.fitness)) -> Optional[Candidate]:
        return max(self.candidates, key=key) if self.candidates else None

    def fitness_summary(self) -> Dict[str, float]:
        """Min, mean and max fitness_score across the population."""
        values = [c.fitness for c in self.candidates]
        if not values:
            return {"min": 0.0, "mean": 0.0, "max": 0.0}
        return {"min": min(values), "mean": sum(values) / len(values), "max": max(values)}

    def diversity(self) -> float:
        """Share of distinct instruction sets in the population."""
        if not self.candidates:
            return 0.0
        return len({c.instruction_key() for c in self.candidates}) / len(self.candidates)
