"""The GEPA generation loop.

One generation:
1. Score every candidate on the trainset (and valset) with a fresh TraceCollector
2. Reflect once on all traces the generation produced
3. Breed offspring: fitness-weighted parents, crossover, then mutation
4. Score the offspring into the same collector
5. Select the combined pool back down to ``population_size``

Generations run strictly one after another; only candidate evaluation inside a
generation is concurrent.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import dspy

from .config import GEPAConfig
from .data.candidate import Candidate, ScoreVector
from .data.population import Population
from .data.reflection import ReflectionResult
from .evaluation.fitness import FitnessEvaluator
from .evaluation.trace_collector import TraceCollector
from .exceptions import FatalEngineError, GenerationCancelled
from .generation.crossover import CrossoverEngine
from .generation.mutation import MutationEngine
from .generation.reflection import ReflectionEngine
from .selection.pareto import ParetoSelector

logger = logging.getLogger(__name__)

TARGET_SCORE_REACHED = "target_score_reached"
CANCELLED = "cancelled"


@dataclass
class GenerationStats:
    generation: int
    fitness_summary: Dict[str, float]
    best_primary_score: float
    best_validation_score: float
    reflection_confidence: float
    mutation_count: int
    crossover_count: int
    offspring_count: int
    trace_count: int
    model_call_count: int
    population_size: int
    diversity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "fitness_summary": dict(self.fitness_summary),
            "best_primary_score": self.best_primary_score,
            "best_validation_score": self.best_validation_score,
            "reflection_confidence": self.reflection_confidence,
            "mutation_count": self.mutation_count,
            "crossover_count": self.crossover_count,
            "offspring_count": self.offspring_count,
            "trace_count": self.trace_count,
            "model_call_count": self.model_call_count,
            "population_size": self.population_size,
            "diversity": self.diversity,
        }


@dataclass
class EvolutionResult:
    """What the loop hands back to the optimizer."""
    population: Population
    best_candidate: Optional[Candidate]
    best_scores: Optional[ScoreVector] = None
    best_validation_score: Optional[float] = None
    history: List[GenerationStats] = field(default_factory=list)
    reflection: Optional[ReflectionResult] = None
    total_traces: int = 0
    model_call_traces: int = 0
    internal_traces: int = 0
    execution_timespan: float = 0.0
    stop_reason: Optional[str] = None

    @property
    def completed_generations(self) -> int:
        return len(self.history)


class GeneticEngine:
    """Orchestrates generations with injected evaluation, reflection, breeding
    and selection components."""

    def __init__(self,
                 config: GEPAConfig,
                 evaluator: FitnessEvaluator,
                 reflection_engine: ReflectionEngine,
                 mutation_engine: MutationEngine,
                 crossover_engine: CrossoverEngine,
                 selector: ParetoSelector,
                 rng: Optional[random.Random] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.config = config
        self.evaluator = evaluator
        self.reflection_engine = reflection_engine
        self.mutation_engine = mutation_engine
        self.crossover_engine = crossover_engine
        self.selector = selector
        self.rng = rng or random.Random(config.seed)
        self.cancel_event = cancel_event or threading.Event()

    def initialize_population(self, student) -> Population:
        """Generation 0: ``population_size`` clones of the baseline program."""
        baseline = Candidate.from_program(student)
        clones = [baseline] + [baseline.clone(0) for _ in range(self.config.population_size - 1)]
        return Population(clones, generation=0)

    def run(self, population: Population, trainset: Sequence[dspy.Example],
            valset: Optional[Sequence[dspy.Example]] = None) -> EvolutionResult:
        """Run up to ``num_generations`` generations.

        A cancelled generation is discarded; the result then reflects the last
        generation that completed.
        """
        result = EvolutionResult(population=population, best_candidate=None)
        start_time = end_time = None

        for generation in range(1, self.config.num_generations + 1):
            if self.cancel_event.is_set():
                result.stop_reason = CANCELLED
                break

            logger.info(f"Processing generation {generation} with {population.size()} candidates.")
            try:
                population, stats, reflection, collector = self.run_generation(population, trainset, valset, generation)
            except (GenerationCancelled, KeyboardInterrupt):
                logger.info(f"Generation {generation} cancelled, keeping results of generation {generation - 1}")
                result.stop_reason = CANCELLED
                break
            except Exception as e:
                raise FatalEngineError(f"Generation {generation} failed: {e}") from e

            traces = collector.all()
            if traces:
                first, last = min(t.timestamp for t in traces), max(t.timestamp for t in traces)
                start_time = first if start_time is None else min(start_time, first)
                end_time = last if end_time is None else max(end_time, last)
            result.total_traces += len(traces)
            result.model_call_traces += stats.model_call_count
            result.internal_traces += len(traces) - stats.model_call_count
            result.population = population
            result.reflection = reflection
            result.history.append(stats)
            result.best_candidate = self.selector.best(population)
            # Later generations re-score the same candidate objects
            result.best_scores = result.best_candidate.scores
            result.best_validation_score = result.best_candidate.validation_score

            logger.info(
                f"Generation {generation}: best primary {stats.best_primary_score:.4f}, "
                f"fitness mean {stats.fitness_summary['mean']:.4f}, "
                f"reflection confidence {stats.reflection_confidence:.2f}"
            )

            if self.config.target_score is not None and stats.best_primary_score >= self.config.target_score:
                logger.info(f"Target score {self.config.target_score} reached - terminating optimization.")
                result.stop_reason = TARGET_SCORE_REACHED
                break

        if start_time is not None:
            result.execution_timespan = end_time - start_time
        return result

    def run_generation(self, population: Population, trainset: Sequence[dspy.Example],
                       valset: Optional[Sequence[dspy.Example]], generation: int
                       ) -> Tuple[Population, GenerationStats, ReflectionResult, TraceCollector]:
        collector = TraceCollector()

        self.evaluator.evaluate_population(population.to_list(), trainset, collector)
        self.evaluator.score_validation(population.to_list(), valset)
        self._check_cancelled()

        context = {
            "generation": generation,
            "population_size": population.size(),
            "best_primary_score": max(c.primary_score for c in population),
        }
        failures = self.failure_report(population)
        if failures:
            context["evaluation_failures"] = failures
        reflection = self.reflection_engine.reflect_on_traces(collector.all(), context=context)
        self._check_cancelled()

        offspring, mutation_count, crossover_count = self.breed(population, reflection, generation)
        self.evaluator.evaluate_population(offspring, trainset, collector)
        self.evaluator.score_validation(offspring, valset)
        self._check_cancelled()

        survivors = self.selector.select(
            population.combine(offspring).to_list(), self.config.population_size, generation=generation
        )
        if survivors.size() != self.config.population_size:
            raise FatalEngineError(
                f"Selection returned {survivors.size()} candidates, expected {self.config.population_size}"
            )

        stats = GenerationStats(
            generation=generation,
            fitness_summary=survivors.fitness_summary(),
            best_primary_score=max(c.primary_score for c in survivors),
            best_validation_score=max(c.validation_score or 0.0 for c in survivors),
            reflection_confidence=reflection.confidence,
            mutation_count=mutation_count,
            crossover_count=crossover_count,
            offspring_count=len(offspring),
            trace_count=collector.count(),
            model_call_count=len(collector.model_call_traces()),
            population_size=survivors.size(),
            diversity=survivors.diversity(),
        )
        return survivors, stats, reflection, collector

    def breed(self, population: Population, reflection: ReflectionResult,
              generation: int) -> Tuple[List[Candidate], int, int]:
        """Create ``population_size`` offspring. Always returns exactly that many."""
        pool = Population(population.to_list(), generation=generation, fitness=lambda c: c.fitness)
        offspring = []
        mutation_count = crossover_count = 0

        for _ in range(self.config.population_size):
            parent_a = pool.sample_stochastic(1, rng=self.rng)[0]
            others = pool.sample_stochastic(1, exclude=[parent_a], rng=self.rng)
            parent_b = others[0] if others else parent_a
            try:
                child = self.crossover_engine.crossover(parent_a, parent_b, generation)
                mutant = self.mutation_engine.mutate(child, reflection, generation)
                # An intermediate crossover child never enters the population
                mutant.parent_ids = list(child.parent_ids)
            except Exception as e:
                logger.warning(f"Breeding from {parent_a.id} failed: {e}, cloning parent")
                offspring.append(parent_a.clone(generation))
                continue

            if child.creation_metadata.get("operator") == "crossover":
                crossover_count += 1
            if mutant.creation_metadata.get("mutated_slots"):
                mutation_count += 1
            offspring.append(mutant)

        return offspring, mutation_count, crossover_count

    @staticmethod
    def failure_report(population: Population) -> str:
        """One line per candidate that failed examples, with its error flag."""
        lines = []
        for candidate in population:
            scores = candidate.scores
            if scores is None or not scores.failed_examples:
                continue
            line = f"{candidate.id}: {scores.failed_examples}/{scores.total_examples} examples failed"
            if scores.has_error:
                line += f", fitness floored ({scores.error})"
            lines.append(line)
        return "; ".join(lines)

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise GenerationCancelled("optimization run cancelled")
