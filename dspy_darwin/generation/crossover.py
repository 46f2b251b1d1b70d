"""Uniform slot-wise crossover of instruction sets."""

import logging
import random
from typing import Optional

from ..config import GEPAConfig
from ..data.candidate import Candidate

logger = logging.getLogger(__name__)


class CrossoverEngine:
    """Recombines two parents slot by slot.

    With probability ``crossover_rate`` every slot is taken from either parent
    with equal chance. Otherwise, or when the parents cannot be recombined,
    the higher-fitness parent is cloned.
    """

    def __init__(self, config: Optional[GEPAConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or GEPAConfig()
        self.rng = rng or random.Random(self.config.seed)
        self.merge_stats = {'attempted': 0, 'successful': 0, 'fallback': 0}

    def crossover(self, parent_a: Candidate, parent_b: Candidate,
                  generation: Optional[int] = None) -> Candidate:
        generation = max(parent_a.generation, parent_b.generation) if generation is None else generation
        if self.rng.random() >= self.config.crossover_rate:
            return self.fitter(parent_a, parent_b).clone(generation)

        self.merge_stats['attempted'] += 1
        try:
            child = self._uniform(parent_a, parent_b, generation)
        except Exception as e:
            logger.warning(f"Crossover of {parent_a.id} and {parent_b.id} failed: {e}, cloning fitter parent")
            self.merge_stats['fallback'] += 1
            return self.fitter(parent_a, parent_b).clone(generation)

        self.merge_stats['successful'] += 1
        return child

    def _uniform(self, parent_a: Candidate, parent_b: Candidate, generation: int) -> Candidate:
        if len(parent_a.instructions) != len(parent_b.instructions):
            raise ValueError(
                f"parents have {len(parent_a.instructions)} and {len(parent_b.instructions)} slots"
            )

        instructions = []
        origins = []
        for slot_a, slot_b in zip(parent_a.instructions, parent_b.instructions):
            if self.rng.random() < 0.5:
                instructions.append(slot_a)
                origins.append(parent_a.id)
            else:
                instructions.append(slot_b)
                origins.append(parent_b.id)

        return parent_a.derive(
            instructions,
            generation,
            [parent_a.id, parent_b.id],
            operator="crossover",
            slot_origins=origins,
        )

    @staticmethod
    def fitter(parent_a: Candidate, parent_b: Candidate) -> Candidate:
        """Higher fitness_score wins; ties go to the first parent."""
        return parent_b if parent_b.fitness > parent_a.fitness else parent_a
