"""Multi-objective fitness evaluation of candidates.

A candidate is run on every example with its instructions applied. The primary
score is the mean metric outcome; three secondary objectives are derived from
the same run:

- token_efficiency = s * B_t / (B_t + tokens per successful example)
- latency          = s * B_l / (B_l + mean seconds per successful example)
- consistency      = s * mean pairwise word-set Jaccard overlap of the responses

where s is the fraction of examples that succeeded, so a failed example counts
as 0.0 on each of them. Baselines come from GEPAConfig. The transforms are
absolute, so a vector does not change with whatever else is in the population.
"""

import logging
import time
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Callable, List, Optional, Sequence

import dspy
from dspy.utils.parallelizer import ParallelExecutor

from ..config import GEPAConfig
from ..data.candidate import Candidate, ScoreVector
from ..exceptions import EvaluationError
from .trace_collector import TraceCallback, TraceCollector

logger = logging.getLogger(__name__)


@dataclass
class ExampleOutcome:
    score: float
    latency: float
    response: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class FitnessEvaluator:
    """Scores candidates of one student program against a metric."""

    def __init__(self, student, metric: Callable, config: Optional[GEPAConfig] = None, lm: Optional[Any] = None):
        self.student = student
        self.metric = metric
        self.config = config or GEPAConfig()
        self.lm = lm

    def evaluate(self, candidate: Candidate, examples: Sequence[dspy.Example],
                 metric: Optional[Callable] = None,
                 collector: Optional[TraceCollector] = None) -> ScoreVector:
        """Run ``candidate`` on ``examples`` and return its score vector.

        A failing example scores 0.0 and is counted; the batch always completes.
        """
        metric = metric or self.metric
        examples = list(examples)
        if not examples:
            return ScoreVector.worst(error="No examples to evaluate")

        try:
            program = candidate.build(self.student)
        except Exception as e:
            logger.warning(f"Could not build program for candidate {candidate.id}: {e}")
            return ScoreVector.worst(error=f"build failed: {e}", total_examples=len(examples))

        callback = TraceCallback(collector, candidate_id=candidate.id, generation=candidate.generation)
        overrides = {"callbacks": [*dspy.settings.get("callbacks", []), callback]}
        if self.lm is not None:
            overrides["lm"] = self.lm

        with dspy.context(**overrides):
            outcomes = [self._run_example(program, example, metric) for example in examples]

        return self._score(outcomes, callback)

    def _run_example(self, program, example: dspy.Example, metric: Callable) -> ExampleOutcome:
        start = time.perf_counter()
        try:
            prediction = program(**example.inputs())
        except Exception as e:
            error = EvaluationError(f"Program failed on example: {e}")
            logger.debug(str(error))
            return ExampleOutcome(score=0.0, latency=time.perf_counter() - start, error=str(error))
        elapsed = time.perf_counter() - start

        response = _prediction_text(prediction)
        try:
            score = _coerce_score(metric(example, prediction))
        except Exception as e:
            error = EvaluationError(f"Metric failed on example: {e}")
            logger.debug(str(error))
            return ExampleOutcome(score=0.0, latency=elapsed, response=response, error=str(error))
        return ExampleOutcome(score=score, latency=elapsed, response=response)

    def _score(self, outcomes: List[ExampleOutcome], callback: TraceCallback) -> ScoreVector:
        total = len(outcomes)
        failed = sum(1 for o in outcomes if o.failed)

        primary = sum(o.score for o in outcomes) / total

        # Failed examples score 0.0 on every secondary objective
        succeeded = [o for o in outcomes if not o.failed]
        token_efficiency = consistency = latency = 0.0
        if succeeded:
            success_rate = len(succeeded) / total
            tokens_per_example = callback.total_tokens / len(succeeded)
            token_efficiency = success_rate * self.config.token_baseline / (self.config.token_baseline + tokens_per_example)
            mean_latency = sum(o.latency for o in succeeded) / len(succeeded)
            latency = success_rate * self.config.latency_baseline / (self.config.latency_baseline + mean_latency)
            consistency = success_rate * response_consistency([o.response for o in succeeded])

        secondary = (token_efficiency + consistency + latency) / 3
        weight = self.config.primary_weight
        fitness = weight * primary + (1 - weight) * secondary

        error = None
        if failed / total > self.config.max_failure_rate:
            first_error = next(o.error for o in outcomes if o.failed)
            error = f"{failed}/{total} examples failed (first cause: {first_error})"
            fitness = 0.0

        return ScoreVector(
            primary_score=primary,
            fitness_score=fitness,
            token_efficiency=token_efficiency,
            consistency=consistency,
            latency=latency,
            failed_examples=failed,
            total_examples=total,
            error=error,
        )

    def evaluate_population(self, candidates: Sequence[Candidate], examples: Sequence[dspy.Example],
                            collector: Optional[TraceCollector] = None) -> List[ScoreVector]:
        """Score every candidate concurrently and attach the vectors to them.

        Returns once every worker has finished, so the collector is complete.
        """
        candidates = list(candidates)
        if not candidates:
            return []

        executor = ParallelExecutor(
            num_threads=self.config.num_threads or dspy.settings.num_threads,
            max_errors=len(candidates) + 1,
            disable_progress_bar=True,
            provide_traceback=False,
        )

        def process_candidate(candidate):
            return self.evaluate(candidate, examples, collector=collector)

        results = executor.execute(process_candidate, candidates)
        vectors = []
        for candidate, vector in zip(candidates, results):
            if vector is None:
                vector = ScoreVector.worst(error="Evaluation worker failed", total_examples=len(examples))
            candidate.scores = vector
            vectors.append(vector)
            logger.debug(f"Candidate {candidate.id}: primary={vector.primary_score:.3f} fitness={vector.fitness_score:.3f}")
        return vectors

    def score_validation(self, candidates: Sequence[Candidate], valset: Optional[Sequence[dspy.Example]]):
        """Attach a validation score (primary score on ``valset``) to every candidate.

        Without a valset the train primary score stands in.
        """
        candidates = list(candidates)
        if not valset:
            for candidate in candidates:
                candidate.validation_score = candidate.primary_score
            return

        executor = ParallelExecutor(
            num_threads=self.config.num_threads or dspy.settings.num_threads,
            max_errors=len(candidates) + 1,
            disable_progress_bar=True,
            provide_traceback=False,
        )
        results = executor.execute(lambda c: self.evaluate(c, valset), candidates)
        for candidate, vector in zip(candidates, results):
            candidate.validation_score = vector.primary_score if vector is not None else 0.0

    def evaluate_baseline(self, examples: Sequence[dspy.Example]) -> ScoreVector:
        """Score the unmodified student."""
        return self.evaluate(Candidate.from_program(self.student), examples)


def response_consistency(responses: Sequence[str]) -> float:
    """Mean pairwise Jaccard overlap of the responses' word sets."""
    word_sets = [set(r.lower().split()) for r in responses]
    if len(word_sets) < 2:
        return 1.0
    overlaps = []
    for a, b in combinations(word_sets, 2):
        union = a | b
        overlaps.append(len(a & b) / len(union) if union else 1.0)
    return sum(overlaps) / len(overlaps)


def _coerce_score(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    score = float(value)
    if score != score:
        raise ValueError("metric returned NaN")
    return min(max(score, 0.0), 1.0)


def _prediction_text(prediction: Any) -> str:
    if prediction is None:
        return ""
    if hasattr(prediction, "items"):
        return " ".join(str(v) for _, v in prediction.items())
    return str(prediction)
