"""Tests for GEPA configuration."""

import pytest

from dspy_darwin.config import GEPAConfig, MutationType
from dspy_darwin.exceptions import ConfigurationError


class TestGEPAConfigDefaults:
    """Default values and helpers."""

    def test_defaults_are_valid(self):
        config = GEPAConfig()

        assert config.num_generations == 10
        assert config.population_size == 8
        assert config.mutation_rate == 0.7
        assert config.crossover_rate == 0.6
        assert config.use_pareto_selection is True
        assert config.target_score is None
        assert config.validate() is config

    def test_config_is_frozen(self):
        config = GEPAConfig()
        with pytest.raises(Exception):
            config.num_generations = 3

    def test_replace_returns_modified_copy(self):
        config = GEPAConfig()
        smaller = config.replace(population_size=2)

        assert smaller.population_size == 2
        assert config.population_size == 8

    def test_selection_strategy_name(self):
        assert GEPAConfig().selection_strategy == "pareto"
        assert GEPAConfig(use_pareto_selection=False).selection_strategy == "fitness_truncation"

    def test_to_dict_reduces_lm_to_model_name(self):
        class FakeLM:
            model = "openai/gpt-4o"

        data = GEPAConfig(reflection_lm=FakeLM()).to_dict()
        assert data["reflection_lm"] == "openai/gpt-4o"
        assert GEPAConfig().to_dict()["reflection_lm"] == "default"

    def test_presets_accept_overrides(self):
        quick = GEPAConfig.for_quick_experiments(num_generations=1)
        production = GEPAConfig.for_production()

        assert quick.num_generations == 1
        assert quick.population_size == 4
        assert production.target_score == 0.98
        quick.validate()
        production.validate()


class TestGEPAConfigValidation:
    """validate() rejects bad counts and rates."""

    def test_construction_does_not_raise(self):
        config = GEPAConfig(num_generations=-1)
        assert config.num_generations == -1

    @pytest.mark.parametrize("overrides", [
        {"num_generations": 0},
        {"num_generations": -1},
        {"population_size": 0},
        {"mutation_rate": 1.5},
        {"crossover_rate": -0.1},
        {"max_failure_rate": 2},
        {"target_score": 1.2},
        {"num_threads": 0},
        {"token_baseline": 0},
    ])
    def test_invalid_values_raise_configuration_error(self, overrides):
        with pytest.raises(ConfigurationError):
            GEPAConfig(**overrides).validate()

    def test_error_lists_every_violation(self):
        with pytest.raises(ConfigurationError) as excinfo:
            GEPAConfig(num_generations=0, mutation_rate=3.0).validate()

        message = str(excinfo.value)
        assert "num_generations" in message
        assert "mutation_rate" in message

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_booleans_are_not_counts(self):
        with pytest.raises(ConfigurationError):
            GEPAConfig(population_size=True).validate()


class TestMutationType:
    def test_parse_is_case_insensitive(self):
        assert MutationType.parse(" Expand ") is MutationType.EXPAND
        assert MutationType.parse("shorten") is None
