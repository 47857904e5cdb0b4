# tests/pooling/test_visualization.py
"""Tests for the plotting functions."""

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pytest  # noqa: E402

from pooling.evaluation.statistics import estimation_error  # noqa: E402
from pooling.evaluation.visualization import (  # noqa: E402
    DEFAULT_STRATEGY_LABELS,
    group_palette,
    plot_estimation_error,
    plot_full_pooling,
    plot_group_lines,
    plot_no_pooling,
    plot_partial_pooling,
    plot_pooling_comparison,
    plot_random_effects,
    plot_raw_clusters,
    plot_shrinkage,
    save_figure,
)
from pooling.models.base import ModelSpec  # noqa: E402
from pooling.models.comparison import fit_all  # noqa: E402


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestBasicPlots:
    """Tests for the single-axes plots."""

    def test_raw_clusters(self, simulated, intercept_spec):
        """Test one scatter point per row."""
        fig, ax = plot_raw_clusters(simulated.data, intercept_spec)
        offsets = ax.collections[0].get_offsets()
        assert len(offsets) == len(simulated.data)
        assert ax.get_xlabel() == "x"

    def test_raw_clusters_needs_predictor(self, simulated):
        """Test an intercept-only model cannot be scattered."""
        with pytest.raises(ValueError, match="predictor"):
            plot_raw_clusters(simulated.data, ModelSpec(predictor=None))

    def test_full_pooling_line(self, unbalanced_comparison):
        """Test exactly one pooled line is drawn."""
        fig, ax = plot_full_pooling(unbalanced_comparison)
        pooled = [line for line in ax.lines if line.get_label() == DEFAULT_STRATEGY_LABELS["full"]]
        assert len(pooled) == 1

    def test_group_palette(self):
        """Test one colour per group."""
        palette = group_palette(["a", "b", "c"])
        assert list(palette) == ["a", "b", "c"]
        assert len(set(palette.values())) == 3


class TestFacetedPlots:
    """Tests for the per-group panels."""

    def test_one_panel_per_group(self, unbalanced_comparison):
        """Test visible panels match the number of groups."""
        fig, axes = plot_pooling_comparison(unbalanced_comparison, ncols=4)
        visible = [ax for ax in axes.flat if ax.get_visible()]

        assert axes.shape == (2, 4)
        assert len(visible) == 6
        assert all(len(ax.lines) == 3 for ax in visible)

    def test_panels_ordered_by_size(self, unbalanced_comparison):
        """Test the smallest group comes first."""
        fig, axes = plot_no_pooling(unbalanced_comparison)
        assert axes.flat[0].get_title().endswith("(n=4)")

    def test_partial_adds_population_line(self, unbalanced_comparison):
        """Test the partial-pooling panels include the population line."""
        fig, axes = plot_partial_pooling(unbalanced_comparison)
        assert len(axes.flat[0].lines) == 2

    def test_unknown_strategy(self, unbalanced_comparison):
        """Test an unknown strategy name is rejected."""
        with pytest.raises(ValueError, match="Unknown strategies"):
            plot_group_lines(unbalanced_comparison, strategies=["complete"])


class TestShrinkagePlots:
    """Tests for the shrinkage and random-effect plots."""

    def test_shrinkage_random_intercept(self, unbalanced_comparison):
        """Test the intercept-vs-size layout."""
        fig, ax = plot_shrinkage(unbalanced_comparison)
        assert ax.get_xlabel() == "Observations in group"

    def test_shrinkage_random_slope(self, simulated, slope_spec):
        """Test the intercept-slope plane layout."""
        fig, ax = plot_shrinkage(fit_all(simulated.data, slope_spec))
        assert ax.get_xlabel() == "Intercept"
        assert ax.get_ylabel() == "Slope of x"

    def test_random_effects(self, unbalanced_comparison):
        """Test one row per group in the caterpillar plot."""
        fig, ax = plot_random_effects(unbalanced_comparison.partial)
        assert len(ax.get_yticks()) == 6

    def test_random_effects_missing_term(self, unbalanced_comparison):
        """Test asking for a slope from a random-intercept model."""
        with pytest.raises(ValueError, match="No random slope"):
            plot_random_effects(unbalanced_comparison.partial, term="slope")

    def test_estimation_error(self, simulated, unbalanced_comparison):
        """Test one bar panel per coefficient."""
        errors = estimation_error(unbalanced_comparison, simulated.truth)
        fig, axes = plot_estimation_error(errors)
        assert len(axes) == 2
        assert len(axes[0].patches) == 3


class TestSaveFigure:
    """Tests for save_figure."""

    def test_saves_each_format(self, temp_dir: Path, unbalanced_comparison):
        """Test files are written for each requested format."""
        fig, _ = plot_shrinkage(unbalanced_comparison)
        paths = save_figure(fig, "shrinkage", temp_dir / "figs", formats=["png", "svg"])

        assert [p.name for p in paths] == ["shrinkage.png", "shrinkage.svg"]
        assert all(p.exists() for p in paths)
