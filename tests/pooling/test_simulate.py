# tests/pooling/test_simulate.py
"""Tests for clustered data simulation."""

import numpy as np
import pandas as pd
import pytest

from pooling.data.simulate import (
    SimulatedData,
    SimulationConfig,
    group_labels,
    simulate_clustered_data,
)


class TestSimulationConfig:
    """Tests for SimulationConfig validation and construction."""

    def test_defaults_are_valid(self):
        """Test the default configuration builds."""
        config = SimulationConfig()
        assert config.sizes == [10] * 8

    def test_group_sizes_take_precedence(self):
        """Test explicit group sizes override n_per_group."""
        config = SimulationConfig(n_groups=3, group_sizes=[2, 4, 6], n_per_group=100)
        assert config.sizes == [2, 4, 6]

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"n_groups": 0}, "n_groups"),
            ({"n_groups": 2, "group_sizes": [3]}, "group_sizes"),
            ({"n_groups": 2, "group_sizes": [3, 0]}, ">= 1 observation"),
            ({"n_per_group": 0}, "n_per_group"),
            ({"intercept_sd": -1.0}, "intercept_sd"),
            ({"residual_sd": -0.1}, "residual_sd"),
            ({"re_correlation": 1.5}, "re_correlation"),
            ({"x_range": (5.0, 5.0)}, "x_range"),
            ({"predictor": "y"}, "must differ"),
        ],
    )
    def test_invalid_values(self, kwargs, match):
        """Test that invalid parameters raise ValueError."""
        with pytest.raises(ValueError, match=match):
            SimulationConfig(**kwargs)

    def test_random_effects_cov(self):
        """Test the covariance matrix of the random effects."""
        config = SimulationConfig(intercept_sd=2.0, slope_sd=0.5, re_correlation=-0.4)
        cov = config.random_effects_cov

        assert cov.shape == (2, 2)
        assert cov[0, 0] == pytest.approx(4.0)
        assert cov[1, 1] == pytest.approx(0.25)
        assert cov[0, 1] == pytest.approx(-0.4 * 2.0 * 0.5)
        assert cov[0, 1] == cov[1, 0]

    def test_from_dict_ignores_unknown_keys(self):
        """Test from_dict drops keys it does not know and applies overrides."""
        config = SimulationConfig.from_dict(
            {"n_groups": 4, "x_range": [1, 3], "colour": "red"},
            seed=9,
        )
        assert config.n_groups == 4
        assert config.x_range == (1.0, 3.0)
        assert config.seed == 9


class TestGroupLabels:
    """Tests for group_labels."""

    def test_zero_padded_and_sorted(self):
        """Test labels sort in numeric order."""
        labels = group_labels(12)
        assert labels[0] == "g01"
        assert labels[-1] == "g12"
        assert sorted(labels) == labels

    def test_width_grows(self):
        """Test label width grows with the number of groups."""
        assert group_labels(150)[0] == "g001"


class TestSimulateClusteredData:
    """Tests for simulate_clustered_data."""

    def test_shapes_and_columns(self, sim_config: SimulationConfig):
        """Test output shapes and column names."""
        sim = simulate_clustered_data(sim_config)

        assert isinstance(sim, SimulatedData)
        assert len(sim.data) == sum(sim_config.group_sizes)
        assert list(sim.data.columns) == ["group", "x", "y"]
        assert list(sim.truth.columns) == ["group", "intercept", "slope", "n"]
        assert sim.truth["n"].tolist() == sim_config.group_sizes

    def test_group_column_is_categorical(self, simulated: SimulatedData):
        """Test the group column is categorical with string labels."""
        assert isinstance(simulated.data["group"].dtype, pd.CategoricalDtype)
        assert list(simulated.data["group"].cat.categories) == group_labels(6)

    def test_same_seed_identical(self, sim_config: SimulationConfig):
        """Test the same seed reproduces the data exactly."""
        a = simulate_clustered_data(sim_config)
        b = simulate_clustered_data(sim_config)

        pd.testing.assert_frame_equal(a.data, b.data)
        pd.testing.assert_frame_equal(a.truth, b.truth)

    def test_different_seed_differs(self, sim_config: SimulationConfig):
        """Test a different seed changes the data."""
        a = simulate_clustered_data(sim_config)
        sim_config.seed = sim_config.seed + 1
        b = simulate_clustered_data(sim_config)
        assert not np.allclose(a.data["y"], b.data["y"])

    def test_predictor_within_range(self, simulated: SimulatedData):
        """Test predictor values lie within x_range."""
        lo, hi = simulated.config.x_range
        assert simulated.data["x"].between(lo, hi).all()

    def test_zero_sds_identical_coefficients(self):
        """Test zero random-effect SDs give every group the population line."""
        config = SimulationConfig(n_groups=5, intercept_sd=0.0, slope_sd=0.0, seed=1)
        truth = simulate_clustered_data(config).truth

        assert np.allclose(truth["intercept"], config.intercept)
        assert np.allclose(truth["slope"], config.slope)

    def test_zero_residual_exact_lines(self):
        """Test that without noise every point lies on its group's true line."""
        config = SimulationConfig(n_groups=4, n_per_group=5, residual_sd=0.0, seed=2)
        sim = simulate_clustered_data(config)
        truth = sim.truth.set_index("group")

        groups = sim.data["group"].astype(str)
        expected = groups.map(truth["intercept"]) + groups.map(truth["slope"]) * sim.data["x"]
        np.testing.assert_allclose(sim.data["y"].to_numpy(), expected.to_numpy())

    def test_custom_column_names(self):
        """Test configurable column names."""
        config = SimulationConfig(n_groups=2, response="score", predictor="hours", group="school")
        sim = simulate_clustered_data(config)
        assert list(sim.data.columns) == ["school", "hours", "score"]
