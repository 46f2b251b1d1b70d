"""GEPA: reflective genetic-Pareto instruction optimization.

GEPA evolves the instructions of a DSPy program. Each generation scores a
population of instruction sets, asks a reflection model to diagnose the
execution traces, breeds offspring by crossover and reflection-guided mutation,
and keeps a Pareto-optimal population across four objectives.

``compile`` never raises: configuration problems and unexpected engine errors
produce an Error Recovery result that returns the original program.
"""

import logging
import random
import secrets
import threading
from typing import Any, Callable, Dict, List, Optional

import dspy
from dspy.teleprompt.teleprompt import Teleprompter

from .config import GEPAConfig
from .data.candidate import ScoreVector
from .data.result import OptimizationResult, OptimizationStatus
from .engine import EvolutionResult, GeneticEngine
from .evaluation.fitness import FitnessEvaluator
from .exceptions import ConfigurationError
from .generation.crossover import CrossoverEngine
from .generation.mutation import InstructionProposer, MutationEngine
from .generation.reflection import ReflectionEngine, ReflectionStrategy
from .selection.pareto import ParetoSelector

logger = logging.getLogger(__name__)

COMPONENT_VERSIONS = {
    "trace_collector": "v2.0",
    "fitness_evaluator": "v2.0",
    "reflection_engine": "v2.0",
    "mutation_engine": "v2.0",
    "crossover_engine": "v2.0",
    "pareto_selector": "v2.0",
    "genetic_engine": "v2.0",
}


class GEPA(Teleprompter):
    """Reflective genetic-Pareto optimizer for DSPy programs.

    Usage:
        optimizer = GEPA(metric=exact_match, reflection_lm=dspy.LM("openai/gpt-4o"), num_generations=5)
        result = optimizer.compile(program, trainset=trainset, valset=valset)
        if result.succeeded:
            program = result.optimized_program
    """

    def __init__(self,
                 metric: Callable,
                 config: Optional[GEPAConfig] = None,
                 *,
                 lm: Optional[Any] = None,
                 reflection_strategy: Optional[ReflectionStrategy] = None,
                 instruction_proposer: Optional[InstructionProposer] = None,
                 **config_overrides):
        """
        Args:
            metric: ``(example, prediction) -> float in [0, 1] or bool``
            config: Run configuration; keyword overrides are applied on top of it
            lm: LM for the program under optimization (None = ``dspy.settings.lm``)
            reflection_strategy: Replaces the default reflection model call
            instruction_proposer: Replaces the default paraphrasing proposer
        """
        super().__init__()
        self.metric = metric
        config = config or GEPAConfig()
        self.config = config.replace(**config_overrides) if config_overrides else config
        self.lm = lm
        self.reflection_strategy = reflection_strategy
        self.instruction_proposer = instruction_proposer
        self._cancel_event = threading.Event()

    def cancel(self):
        """Stop after the current phase; the partial generation is discarded."""
        self._cancel_event.set()

    def compile(self, student: dspy.Module, *, trainset: List[dspy.Example],
                teacher: Optional[dspy.Module] = None,
                valset: Optional[List[dspy.Example]] = None, **kwargs) -> OptimizationResult:
        run_id = f"gepa-run-{secrets.token_hex(4)}"
        self._cancel_event.clear()
        try:
            self._validate_inputs(student, trainset)
            logger.info(f"Starting GEPA run {run_id} with {len(trainset)} training examples")
            evaluator = FitnessEvaluator(student, self.metric, self.config, lm=self.lm)
            engine = self._build_engine(evaluator)
            population = engine.initialize_population(student)
            evolution = engine.run(population, trainset, valset)

            if evolution.best_candidate is None:
                logger.info(f"GEPA run {run_id} stopped before a generation completed")
                return self._unoptimized_result(student, run_id, evolution)
            return self._success_result(student, run_id, evolution)
        except Exception as e:
            logger.error(f"GEPA run {run_id} failed, falling back to the original program: {e}")
            return self._recovery_result(student, trainset, run_id, e)

    def _validate_inputs(self, student, trainset):
        self.config.validate()
        if not trainset:
            raise ConfigurationError("trainset must contain at least one example")
        if not student.named_predictors():
            raise ConfigurationError("program has no predictors to optimize")

    def _build_engine(self, evaluator: FitnessEvaluator) -> GeneticEngine:
        rng = random.Random(self.config.seed)
        return GeneticEngine(
            config=self.config,
            evaluator=evaluator,
            reflection_engine=ReflectionEngine(
                reflection_lm=self.config.reflection_lm,
                strategy=self.reflection_strategy,
                trace_samples=self.config.reflection_trace_samples,
            ),
            mutation_engine=MutationEngine(
                self.config,
                proposer=self.instruction_proposer or InstructionProposer(self.config.reflection_lm),
                rng=rng,
            ),
            crossover_engine=CrossoverEngine(self.config, rng=rng),
            selector=ParetoSelector(self.config),
            rng=rng,
            cancel_event=self._cancel_event,
        )

    def _success_result(self, student, run_id: str, evolution: EvolutionResult) -> OptimizationResult:
        best = evolution.best_candidate
        optimized_program = best.build(student)
        optimized_program._compiled = True

        best_scores = evolution.best_scores or best.scores
        validation_score = evolution.best_validation_score
        if validation_score is None:
            validation_score = best_scores.primary_score
        scores = best_scores.to_dict()
        scores["validation_score"] = validation_score
        logger.info(f"GEPA run {run_id} finished: best primary score {best_scores.primary_score:.4f} (candidate {best.id})")

        return OptimizationResult(
            optimized_program=optimized_program,
            best_score_value=best_scores.primary_score,
            scores=scores,
            metadata={
                **self._base_metadata(run_id, OptimizationStatus.SUCCESS),
                "reflection_insights": evolution.reflection.insights() if evolution.reflection else {},
                "trace_analysis": self._trace_analysis(evolution),
                "best_candidate": {**best.summary(), "validation_score": validation_score},
            },
            history={
                **self._base_history("Complete GEPA"),
                "num_generations": evolution.completed_generations,
                "generation_history": [stats.to_dict() for stats in evolution.history],
                "early_stop_reason": evolution.stop_reason,
                "final_diversity": evolution.population.diversity(),
            },
        )

    def _unoptimized_result(self, student, run_id: str, evolution: EvolutionResult) -> OptimizationResult:
        """Cancelled before any generation finished: hand back the original program."""
        return OptimizationResult(
            optimized_program=student,
            best_score_value=0.0,
            scores={**ScoreVector().to_dict(), "validation_score": 0.0},
            metadata={
                **self._base_metadata(run_id, OptimizationStatus.SUCCESS),
                "reflection_insights": {},
                "trace_analysis": self._trace_analysis(evolution),
            },
            history={
                **self._base_history("Cancelled"),
                "num_generations": 0,
                "generation_history": [],
                "early_stop_reason": evolution.stop_reason,
            },
        )

    def _recovery_result(self, student, trainset, run_id: str, error: Exception) -> OptimizationResult:
        fallback = ScoreVector()
        if not isinstance(error, ConfigurationError):
            try:
                fallback = FitnessEvaluator(student, self.metric, self.config, lm=self.lm).evaluate_baseline(trainset)
            except Exception as e:
                logger.warning(f"Fallback evaluation of the original program failed: {e}")

        return OptimizationResult(
            optimized_program=student,
            best_score_value=fallback.primary_score,
            scores={**fallback.to_dict(), "validation_score": fallback.primary_score},
            metadata={
                **self._base_metadata(run_id, OptimizationStatus.RECOVERED),
                "error_details": {
                    "message": str(error),
                    "class": error.__class__.__name__,
                    "recovery_strategy": "fallback_to_original",
                },
            },
            history={
                **self._base_history("Error Recovery"),
                "num_generations": 0,
                "generation_history": [],
                "error": str(error),
            },
        )

    def _base_metadata(self, run_id: str, status: OptimizationStatus) -> Dict[str, Any]:
        return {
            "optimizer": "GEPA",
            "implementation_status": status.value,
            "optimization_run_id": run_id,
            "reflection_lm": self.config.reflection_model_name,
            "component_versions": dict(COMPONENT_VERSIONS),
        }

    def _base_history(self, phase: str) -> Dict[str, Any]:
        return {
            "phase": phase,
            "population_size": self.config.population_size,
            "mutation_rate": self.config.mutation_rate,
            "crossover_rate": self.config.crossover_rate,
            "selection_strategy": self.config.selection_strategy,
        }

    @staticmethod
    def _trace_analysis(evolution: EvolutionResult) -> Dict[str, Any]:
        return {
            "total_traces": evolution.total_traces,
            "llm_traces": evolution.model_call_traces,
            "module_traces": evolution.internal_traces,
            "execution_timespan": evolution.execution_timespan,
        }
