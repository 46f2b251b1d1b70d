"""Tests for multi-objective fitness evaluation."""

import pytest

import dspy
from dspy.primitives.example import Example
from dspy.utils.dummies import DummyLM

from dspy_darwin.config import GEPAConfig
from dspy_darwin.data.candidate import Candidate
from dspy_darwin.evaluation.fitness import FitnessEvaluator, response_consistency
from dspy_darwin.evaluation.trace_collector import TraceCollector
from dspy_darwin.selection.pareto import ParetoSelector


def exact_match(example, prediction, trace=None):
    return example.answer == prediction.answer


@pytest.fixture
def program():
    return dspy.Predict("question -> answer")


@pytest.fixture
def arithmetic_lm():
    """Answers only the questions it knows; anything else fails to parse."""
    return DummyLM({
        "2+2?": {"answer": "4"},
        "3+3?": {"answer": "6"},
        "5+5?": {"answer": "eleven"},
    })


def make_examples(*pairs):
    return [Example(question=q, answer=a).with_inputs("question") for q, a in pairs]


class Broken(dspy.Module):
    def __init__(self):
        super().__init__()
        self.answer = dspy.Predict("question -> answer")

    def forward(self, question):
        raise RuntimeError("backend unavailable")


class TestFitnessEvaluator:
    """Scoring single candidates."""

    def test_all_correct(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, lm=arithmetic_lm)
        scores = evaluator.evaluate(Candidate.from_program(program), make_examples(("2+2?", "4"), ("3+3?", "6")))

        assert scores.primary_score == 1.0
        assert scores.failed_examples == 0
        assert scores.error is None
        for value in (scores.fitness_score, scores.token_efficiency, scores.consistency, scores.latency):
            assert 0.0 <= value <= 1.0

    def test_boolean_and_partial_metric_outcomes(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, lm=arithmetic_lm)
        scores = evaluator.evaluate(Candidate.from_program(program), make_examples(("2+2?", "4"), ("5+5?", "10")))

        assert scores.primary_score == pytest.approx(0.5)
        assert scores.failed_examples == 0

    def test_metric_scores_are_clamped(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, lambda e, p: 7, lm=arithmetic_lm)
        scores = evaluator.evaluate(Candidate.from_program(program), make_examples(("2+2?", "4")))

        assert scores.primary_score == 1.0

    def test_failing_example_scores_zero_without_aborting(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, GEPAConfig(max_failure_rate=0.5), lm=arithmetic_lm)
        examples = make_examples(("2+2?", "4"), ("3+3?", "6"), ("Unknown question", "?"))

        scores = evaluator.evaluate(Candidate.from_program(program), examples)

        assert scores.primary_score == pytest.approx(2 / 3)
        assert scores.failed_examples == 1
        assert scores.total_examples == 3
        assert scores.error is None
        assert scores.fitness_score > 0.0
        assert scores.token_efficiency <= 2 / 3
        assert scores.latency <= 2 / 3
        assert scores.consistency <= 2 / 3

    def test_failure_budget_floors_fitness(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, GEPAConfig(max_failure_rate=0.5), lm=arithmetic_lm)
        examples = make_examples(("2+2?", "4"), ("Unknown one", "?"), ("Unknown two", "?"))

        scores = evaluator.evaluate(Candidate.from_program(program), examples)

        assert scores.primary_score == pytest.approx(1 / 3)
        assert scores.fitness_score == 0.0
        assert scores.error is not None
        assert "2/3" in scores.error
        assert "first cause" in scores.error

    def test_metric_exception_is_a_failed_example(self, program, arithmetic_lm):
        def broken_metric(example, prediction):
            raise KeyError("answer")

        evaluator = FitnessEvaluator(program, broken_metric, lm=arithmetic_lm)
        scores = evaluator.evaluate(Candidate.from_program(program), make_examples(("2+2?", "4")))

        assert scores.primary_score == 0.0
        assert scores.failed_examples == 1
        assert scores.fitness_score == 0.0

    def test_failed_examples_are_worst_case_on_every_objective(self, program, arithmetic_lm):
        examples = make_examples(("5+5?", "10"))
        working = Candidate.from_program(program)
        working.scores = FitnessEvaluator(program, exact_match, lm=arithmetic_lm).evaluate(working, examples)
        broken_program = Broken()
        broken = Candidate.from_program(broken_program)
        broken.scores = FitnessEvaluator(broken_program, exact_match, lm=arithmetic_lm).evaluate(broken, examples)

        assert working.primary_score == broken.primary_score == 0.0
        assert broken.scores.failed_examples == 1
        assert (broken.scores.token_efficiency, broken.scores.consistency, broken.scores.latency) == (0.0, 0.0, 0.0)
        assert working.scores.token_efficiency > 0.0 and working.scores.latency > 0.0
        assert working.dominates(broken)
        assert ParetoSelector().pareto_front([broken, working]) == [working]
        assert ParetoSelector().best([broken, working]) is working

    def test_metric_override(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, lm=arithmetic_lm)
        scores = evaluator.evaluate(
            Candidate.from_program(program), make_examples(("2+2?", "5")), metric=lambda e, p: True
        )

        assert scores.primary_score == 1.0

    def test_empty_examples(self, program):
        scores = FitnessEvaluator(program, exact_match).evaluate(Candidate.from_program(program), [])
        assert scores.primary_score == 0.0
        assert scores.error is not None

    def test_token_efficiency_falls_with_longer_prompts(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, lm=arithmetic_lm)
        examples = make_examples(("2+2?", "4"))
        short = Candidate.from_program(program)
        verbose = short.derive(["Answer the question. " * 100], generation=1)

        assert evaluator.evaluate(short, examples).token_efficiency > evaluator.evaluate(verbose, examples).token_efficiency


class TestPopulationEvaluation:
    """Concurrent scoring of a whole population."""

    def test_scores_are_attached_to_every_candidate(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, GEPAConfig(num_threads=4), lm=arithmetic_lm)
        baseline = Candidate.from_program(program)
        candidates = [baseline] + [baseline.clone(0) for _ in range(3)]
        collector = TraceCollector()

        vectors = evaluator.evaluate_population(candidates, make_examples(("2+2?", "4"), ("3+3?", "6")), collector)

        assert len(vectors) == 4
        assert all(c.scores is not None and c.primary_score == 1.0 for c in candidates)
        assert len(collector.model_call_traces()) == 8

    def test_validation_score(self, program, arithmetic_lm):
        evaluator = FitnessEvaluator(program, exact_match, lm=arithmetic_lm)
        candidate = Candidate.from_program(program)
        evaluator.evaluate_population([candidate], make_examples(("2+2?", "4")))

        evaluator.score_validation([candidate], make_examples(("5+5?", "10")))
        assert candidate.validation_score == 0.0

        evaluator.score_validation([candidate], None)
        assert candidate.validation_score == 1.0


class TestResponseConsistency:
    def test_identical_responses(self):
        assert response_consistency(["the answer is 4", "the answer is 4"]) == 1.0

    def test_disjoint_responses(self):
        assert response_consistency(["alpha beta", "gamma delta"]) == 0.0

    def test_single_response(self):
        assert response_consistency(["anything"]) == 1.0
