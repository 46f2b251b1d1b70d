"""Tests for multi-objective survivor selection."""

from dspy_darwin.config import GEPAConfig
from dspy_darwin.data.candidate import Candidate, ScoreVector
from dspy_darwin.selection.pareto import ParetoSelector


def scored(primary, token=0.5, consistency=0.5, latency=0.5, fitness=None, parents=None, name=None):
    fitness = primary if fitness is None else fitness
    candidate = Candidate(
        instructions=[name or f"instruction {primary}"],
        parent_ids=list(parents or []),
        scores=ScoreVector(primary_score=primary, fitness_score=fitness, token_efficiency=token,
                           consistency=consistency, latency=latency),
    )
    return candidate


class TestDominance:
    def test_dominates_requires_strict_improvement(self):
        a = ScoreVector(primary_score=0.8, token_efficiency=0.5, consistency=0.5, latency=0.5)
        b = ScoreVector(primary_score=0.8, token_efficiency=0.5, consistency=0.5, latency=0.5)
        c = ScoreVector(primary_score=0.7, token_efficiency=0.5, consistency=0.5, latency=0.5)

        assert not a.dominates(b)
        assert a.dominates(c)
        assert not c.dominates(a)

    def test_trade_offs_do_not_dominate(self):
        accurate = ScoreVector(primary_score=0.9, token_efficiency=0.2)
        cheap = ScoreVector(primary_score=0.6, token_efficiency=0.9)

        assert not accurate.dominates(cheap)
        assert not cheap.dominates(accurate)


class TestParetoSelector:
    """select() behaviour."""

    def test_never_returns_more_than_target(self):
        pool = [scored(i / 10, token=1 - i / 10) for i in range(10)]
        for target in (1, 3, 5, 10, 15):
            assert len(ParetoSelector().select(pool, target)) <= target

    def test_returns_exactly_target_when_pool_is_large_enough(self):
        pool = [scored(i / 10) for i in range(10)]
        assert len(ParetoSelector().select(pool, 4)) == 4

    def test_first_front_before_dominated_candidates(self):
        accurate = scored(0.9, token=0.2)
        cheap = scored(0.6, token=0.9)
        dominated = scored(0.5, token=0.1)

        survivors = ParetoSelector().select([dominated, cheap, accurate], 2)

        assert set(survivors) == {accurate, cheap}

    def test_dominated_candidate_never_beats_its_dominator(self):
        strong = scored(0.8, token=0.8, consistency=0.8, latency=0.8)
        weak = scored(0.8, token=0.7, consistency=0.8, latency=0.8, fitness=0.99)

        survivors = ParetoSelector().select([weak, strong], 1)

        assert survivors.to_list() == [strong]

    def test_overflowing_front_prefers_primary_score(self):
        front = [scored(0.9, token=0.1), scored(0.5, token=0.5), scored(0.1, token=0.9)]
        survivors = ParetoSelector().select(front, 2)

        assert sorted(c.primary_score for c in survivors) == [0.5, 0.9]

    def test_lineage_tiebreak(self):
        leader = scored(0.9, token=0.1, parents=["p1"])
        sibling = scored(0.5, token=0.5, parents=["p1"], name="sibling")
        outsider = scored(0.5, token=0.5, parents=["p2"], name="outsider")
        # sibling and outsider tie on every objective; leader is chosen first
        survivors = ParetoSelector().select([leader, sibling, outsider], 2)

        assert set(survivors) == {leader, outsider}

    def test_fitness_truncation_when_pareto_disabled(self):
        pool = [scored(0.9, fitness=0.2), scored(0.1, fitness=0.8), scored(0.5, fitness=0.5)]
        survivors = ParetoSelector(GEPAConfig(use_pareto_selection=False)).select(pool, 2)

        assert [c.fitness for c in survivors] == [0.8, 0.5]

    def test_empty_inputs(self):
        assert len(ParetoSelector().select([], 3)) == 0
        assert len(ParetoSelector().select([scored(0.5)], 0)) == 0

    def test_best_is_highest_primary_on_first_front(self):
        pool = [scored(0.9, token=0.1), scored(0.6, token=0.9), scored(0.3, token=0.05)]
        assert ParetoSelector().best(pool).primary_score == 0.9

    def test_fronts_partition_the_pool(self):
        pool = [scored(0.9), scored(0.8), scored(0.7, token=0.9)]
        fronts = ParetoSelector().non_dominated_fronts(pool)

        assert sum(len(front) for front in fronts) == 3
        assert pool[0] in fronts[0]
        assert pool[1] in fronts[1]
