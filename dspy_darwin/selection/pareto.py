"""Multi-objective survivor selection.

Candidates are compared on primary_score, token_efficiency, consistency and
latency. Survivors are taken front by front (non-dominated sorting); the front
that would overflow the target is ordered by primary score, then by lineage
novelty with respect to the survivors already chosen.
"""

import logging
from collections import defaultdict
from typing import Iterable, List, Optional, Sequence, Set

from ..config import GEPAConfig
from ..data.candidate import Candidate
from ..data.population import Population

logger = logging.getLogger(__name__)


class ParetoSelector:
    """Reduces a scored pool to the next generation's population."""

    def __init__(self, config: Optional[GEPAConfig] = None):
        self.config = config or GEPAConfig()
        self.selection_counts = defaultdict(int)

    def select(self, candidates: Sequence[Candidate], target_size: int,
               generation: Optional[int] = None) -> Population:
        """Pick at most ``target_size`` survivors from ``candidates``."""
        candidates = list(candidates)
        generation = generation if generation is not None else max((c.generation for c in candidates), default=0)
        if target_size <= 0 or not candidates:
            return Population(generation=generation)

        if self.config.use_pareto_selection:
            selected = self._select_by_fronts(candidates, target_size)
        else:
            selected = sorted(candidates, key=lambda c: c.fitness, reverse=True)[:target_size]

        for candidate in selected:
            self.selection_counts[candidate.id] += 1
        logger.debug(f"Selected {len(selected)} of {len(candidates)} candidates")
        return Population(selected, generation=generation)

    def _select_by_fronts(self, candidates: List[Candidate], target_size: int) -> List[Candidate]:
        selected: List[Candidate] = []
        for front in self.non_dominated_fronts(candidates):
            remaining = target_size - len(selected)
            if len(front) <= remaining:
                selected.extend(sorted(front, key=lambda c: c.primary_score, reverse=True))
            else:
                selected.extend(self._break_ties(front, selected, remaining))
            if len(selected) >= target_size:
                break
        return selected

    def _break_ties(self, front: List[Candidate], selected: List[Candidate], count: int) -> List[Candidate]:
        """Fill ``count`` places from an overflowing front.

        Highest primary score first; among equal scores, prefer candidates whose
        parents are not shared with survivors already chosen.
        """
        lineage: Set[str] = set()
        for survivor in selected:
            lineage.update(_lineage_of(survivor))

        pool = list(front)
        chosen = []
        while pool and len(chosen) < count:
            best = max(
                pool,
                key=lambda c: (c.primary_score, -len(_lineage_of(c) & lineage), c.fitness),
            )
            pool.remove(best)
            chosen.append(best)
            lineage.update(_lineage_of(best))
        return chosen

    def non_dominated_fronts(self, candidates: Iterable[Candidate]) -> List[List[Candidate]]:
        """Successive Pareto fronts; the first is undominated in the whole set."""
        remaining = list(candidates)
        fronts = []
        while remaining:
            front = self.pareto_front(remaining)
            fronts.append(front)
            remaining = [c for c in remaining if c not in front]
        return fronts

    def pareto_front(self, candidates: Iterable[Candidate]) -> List[Candidate]:
        candidates = list(candidates)
        return [
            candidate for candidate in candidates
            if not any(other.dominates(candidate) for other in candidates if other is not candidate)
        ]

    def best(self, candidates: Iterable[Candidate]) -> Optional[Candidate]:
        """Highest primary score on the first front."""
        front = self.pareto_front(candidates)
        if not front:
            return None
        return max(front, key=lambda c: (c.primary_score, c.validation_score or 0.0, c.fitness))


def _lineage_of(candidate: Candidate) -> Set[str]:
    return set(candidate.parent_ids) | {candidate.id}
