"""Tests for reflection-guided mutation and crossover."""

import random
from unittest.mock import Mock

import pytest

from dspy_darwin.config import GEPAConfig, MutationType
from dspy_darwin.data.candidate import Candidate, ScoreVector
from dspy_darwin.data.reflection import ReflectionResult
from dspy_darwin.generation.crossover import CrossoverEngine
from dspy_darwin.generation.mutation import MutationEngine, apply_mutation_type, parse_suggestions


class EchoProposer:
    """Deterministic stand-in for the paraphrasing model."""

    def propose(self, instruction, reflection):
        return f"{instruction} (revised)"


def reflection(*mutations):
    return ReflectionResult(trace_id="reflection-test", diagnosis="Answers are terse.",
                            improvements=["Explain more."], confidence=0.7,
                            suggested_mutations=list(mutations))


@pytest.fixture
def candidate():
    return Candidate(
        instructions=["Carefully solve the problem.", "Answer with a number."],
        slot_names=["reason", "answer"],
    )


class TestParseSuggestions:
    def test_targeted_by_name_and_index(self):
        parsed = parse_suggestions(["answer: Reply with digits only.", "0: Think first.", "nowhere: x"],
                                   ["reason", "answer"])

        assert [(p.slot, p.instruction) for p in parsed] == [(1, "Reply with digits only."), (0, "Think first.")]

    def test_keywords(self):
        parsed = parse_suggestions(["Expand", "rephrase"], ["reason"])
        assert [p.mutation_type for p in parsed] == [MutationType.EXPAND, MutationType.REPHRASE]


class TestMutationOperators:
    def test_simplify_removes_filler(self):
        assert apply_mutation_type("Carefully solve the problem.", MutationType.SIMPLIFY) == "solve the problem."

    def test_simplify_keeps_instruction_it_would_empty(self):
        assert apply_mutation_type("thorough", MutationType.SIMPLIFY) == "thorough"

    def test_rephrase_uses_synonyms(self):
        assert apply_mutation_type("Solve and answer.", MutationType.REPHRASE) == "resolve and respond to."

    def test_expand_and_combine_append(self):
        rng = random.Random(0)
        assert apply_mutation_type("Answer.", MutationType.EXPAND, rng).startswith("Answer. ")
        assert apply_mutation_type("Answer.", MutationType.COMBINE, rng).startswith("Answer. ")

    def test_rewrite_keeps_content(self):
        rewritten = apply_mutation_type("Answer the question.", MutationType.REWRITE, random.Random(1))
        assert "nswer the question" in rewritten


class TestMutationEngine:
    """mutate() behaviour."""

    def test_zero_rate_copies_verbatim(self, candidate):
        engine = MutationEngine(GEPAConfig(mutation_rate=0.0), proposer=EchoProposer())
        child = engine.mutate(candidate, reflection("expand"), generation=1)

        assert child is not candidate
        assert child.id != candidate.id
        assert child.instructions == candidate.instructions
        assert child.parent_ids == [candidate.id]
        assert child.generation == 1
        assert child.creation_metadata["mutated_slots"] == []

    def test_targeted_suggestion_wins(self, candidate):
        engine = MutationEngine(GEPAConfig(mutation_rate=1.0), proposer=EchoProposer())
        child = engine.mutate(candidate, reflection("answer: Reply with digits only.", "expand"), generation=1)

        assert child.instructions[1] == "Reply with digits only."
        assert child.instructions[0].startswith("Carefully solve the problem. ")
        assert child.creation_metadata["mutation_kinds"] == ["expand", "targeted"]

    def test_keyword_operator(self, candidate):
        engine = MutationEngine(GEPAConfig(mutation_rate=1.0), proposer=EchoProposer())
        child = engine.mutate(candidate, reflection("simplify"))

        assert child.instructions[0] == "solve the problem."
        assert child.creation_metadata["mutated_slots"] == ["reason"]

    def test_paraphrase_without_suggestions(self, candidate):
        engine = MutationEngine(GEPAConfig(mutation_rate=1.0), proposer=EchoProposer())
        child = engine.mutate(candidate, reflection())

        assert child.instructions == [
            "Carefully solve the problem. (revised)",
            "Answer with a number. (revised)",
        ]
        assert child.creation_metadata["operator"] == "mutation"

    def test_proposer_failure_falls_back_to_identity(self, candidate):
        proposer = Mock()
        proposer.propose.side_effect = RuntimeError("reflection model offline")
        engine = MutationEngine(GEPAConfig(mutation_rate=1.0), proposer=proposer)

        child = engine.mutate(candidate, reflection())

        assert child.instructions == candidate.instructions
        assert child.parent_ids == [candidate.id]
        assert proposer.propose.call_count == 2

    def test_seeded_engines_agree(self, candidate):
        config = GEPAConfig(mutation_rate=0.5, seed=7)
        first = MutationEngine(config, proposer=EchoProposer()).mutate(candidate, reflection("expand", "combine"))
        second = MutationEngine(config, proposer=EchoProposer()).mutate(candidate, reflection("expand", "combine"))

        assert first.instructions == second.instructions


class TestCrossoverEngine:
    """crossover() behaviour."""

    @pytest.fixture
    def parents(self):
        parent_a = Candidate(instructions=["a0", "a1", "a2", "a3"], slot_names=["s0", "s1", "s2", "s3"],
                             scores=ScoreVector(fitness_score=0.4))
        parent_b = Candidate(instructions=["b0", "b1", "b2", "b3"], slot_names=["s0", "s1", "s2", "s3"],
                             scores=ScoreVector(fitness_score=0.9))
        return parent_a, parent_b

    def test_uniform_crossover(self, parents):
        parent_a, parent_b = parents
        engine = CrossoverEngine(GEPAConfig(crossover_rate=1.0), rng=random.Random(3))

        child = engine.crossover(parent_a, parent_b, generation=2)

        assert child.parent_ids == [parent_a.id, parent_b.id]
        assert child.generation == 2
        assert child.creation_metadata["operator"] == "crossover"
        for index, instruction in enumerate(child.instructions):
            assert instruction in (parent_a.instructions[index], parent_b.instructions[index])
        assert engine.merge_stats["successful"] == 1

    def test_failed_roll_clones_fitter_parent(self, parents):
        parent_a, parent_b = parents
        child = CrossoverEngine(GEPAConfig(crossover_rate=0.0)).crossover(parent_a, parent_b, generation=2)

        assert child.instructions == parent_b.instructions
        assert child.parent_ids == [parent_b.id]
        assert child.creation_metadata["operator"] == "clone"

    def test_incompatible_parents_fall_back(self, parents):
        parent_a, _ = parents
        short = Candidate(instructions=["only"], scores=ScoreVector(fitness_score=0.1))
        engine = CrossoverEngine(GEPAConfig(crossover_rate=1.0))

        child = engine.crossover(parent_a, short, generation=1)

        assert child.instructions == parent_a.instructions
        assert engine.merge_stats["fallback"] == 1

    def test_ties_go_to_first_parent(self):
        first = Candidate(instructions=["x"])
        second = Candidate(instructions=["y"])
        assert CrossoverEngine.fitter(first, second) is first
