# tests/pooling/test_deck.py
"""Tests for the deck: context, figures, narrative, HTML and CLI."""

import json
from pathlib import Path
from typing import Dict
from unittest import mock

import numpy as np
import pandas as pd
import pytest
from omegaconf import OmegaConf
from statsmodels.regression.mixed_linear_model import MixedLM

from pooling.data.datasets import DatasetError
from pooling.deck.cli import _build_tables, main
from pooling.deck.context import CaveatDemo, DeckContext, build_context, load_deck_data
from pooling.deck.figures import FigureResult, generate_all_figures
from pooling.deck.html_builder import build_deck, html_table
from pooling.deck.narrative import SlideContent, generate_all_slides

SLIDE_ORDER = [
    "title",
    "clustered_data",
    "full_pooling",
    "no_pooling",
    "partial_pooling",
    "fitting",
    "comparison",
    "shrinkage",
    "variance",
    "why_it_matters",
    "caveats",
    "exercise",
    "summary",
]

EXERCISE_CSV = (
    "Reaction,Days,Subject\n"
    "250.1,0,308\n258.7,1,308\n251.0,2,308\n"
    "240.0,0,309\n251.5,1,309\n266.3,2,309\n"
    "222.7,0,310\n225.0,1,310\n230.1,2,310\n"
)


@pytest.fixture
def deck_context(sample_config_dict: Dict, temp_dir: Path) -> DeckContext:
    cfg = OmegaConf.create(sample_config_dict)
    return build_context(cfg, temp_dir / "cache")


class TestBuildContext:
    """Tests for build_context and its helpers."""

    def test_simulated_context(self, deck_context: DeckContext):
        """Test everything the slides read is populated."""
        ctx = deck_context

        assert ctx.source == "simulate"
        assert len(ctx.data) == 70
        assert ctx.truth is not None
        assert ctx.errors is not None
        assert ctx.lrt is not None
        assert ctx.bootstrap is not None
        assert ctx.naive_ci is not None
        assert ctx.shrinkage is not None and ctx.shrinkage_slope is not None
        assert 0.0 <= ctx.icc <= 1.0
        assert list(ctx.group_table["n"]) == [4, 6, 8, 12, 16, 24]

    def test_caveat_demo(self, deck_context: DeckContext):
        """Test the singular-fit demonstration is always reported."""
        demo = deck_context.caveat
        assert isinstance(demo, CaveatDemo)
        assert demo.spec.random_slope is True
        assert "true slope SD = 0" in demo.description
        assert "slope_var" in demo.variance_components
        assert (demo.error is not None) == demo.diagnostics.fallback

    def test_exercise_not_fetched(self, deck_context: DeckContext):
        """Test the exercise is described but not downloaded by default."""
        ex = deck_context.exercise
        assert ex.url == "https://example.org/data/sleepstudy.csv"
        assert ex.local_path is None
        assert ex.preview is None

    def test_exercise_fetched(self, sample_config_dict: Dict, temp_dir: Path):
        """Test a fetched exercise dataset is previewed."""
        csv_path = temp_dir / "sleepstudy.csv"
        csv_path.write_text(EXERCISE_CSV)
        sample_config_dict["exercise"]["fetch"] = True
        sample_config_dict["bootstrap"]["enabled"] = False
        sample_config_dict["lrt"]["enabled"] = False
        sample_config_dict["caveat"]["enabled"] = False

        with mock.patch("pooling.deck.context.fetch_dataset", return_value=csv_path) as fetch:
            ctx = build_context(OmegaConf.create(sample_config_dict), temp_dir / "cache")

        fetch.assert_called_once()
        assert ctx.exercise.local_path == csv_path
        assert ctx.exercise.n_rows == 9
        assert ctx.exercise.n_groups == 3
        assert len(ctx.exercise.preview) == 6
        assert ctx.bootstrap is None and ctx.lrt is None and ctx.caveat is None

    def test_bundled_source(self, sample_config_dict: Dict):
        """Test the bundled dataset is renamed to the configured columns."""
        sample_config_dict["data"]["source"] = "bundled"
        data, truth, sim_cfg = load_deck_data(OmegaConf.create(sample_config_dict))

        assert list(data.columns) == ["group", "x", "y"]
        assert len(data) == 122
        assert truth is None and sim_cfg is None

    def test_csv_source(self, sample_config_dict: Dict, temp_dir: Path):
        """Test a CSV source with its own column names."""
        path = temp_dir / "local.csv"
        path.write_text(EXERCISE_CSV)
        sample_config_dict["data"]["source"] = "csv"
        sample_config_dict["data"]["path"] = str(path)
        sample_config_dict["data"]["source_columns"] = {
            "response": "Reaction",
            "predictor": "Days",
            "group": "Subject",
        }
        data, truth, _ = load_deck_data(OmegaConf.create(sample_config_dict))

        assert list(data.columns) == ["group", "x", "y"]
        assert data["group"].nunique() == 3
        assert truth is None

    def test_unknown_source(self, sample_config_dict: Dict):
        """Test an unknown source raises DatasetError."""
        sample_config_dict["data"]["source"] = "database"
        with pytest.raises(DatasetError, match="Unknown data source"):
            load_deck_data(OmegaConf.create(sample_config_dict))


class TestFiguresAndSlides:
    """Tests for figure generation and slide narrative."""

    def test_generate_all_figures(self, deck_context: DeckContext, temp_dir: Path):
        """Test figures are written and base64-encoded."""
        figures = generate_all_figures(deck_context, temp_dir / "figures", formats=["png"])
        names = [f.name for f in figures]

        assert all(isinstance(f, FigureResult) for f in figures)
        assert "pooling_comparison" in names
        assert "shrinkage" in names
        assert "interval_comparison" in names
        # Random-intercept model
        assert "random_slopes" not in names
        assert all(f.png_base64 and f.paths[0].exists() for f in figures)

    def test_slide_order(self, deck_context: DeckContext):
        """Test slides come in presentation order."""
        slides = generate_all_slides(deck_context)
        assert [s.slide_id for s in slides] == SLIDE_ORDER
        assert slides[0].title == "Test deck"
        assert all(isinstance(s, SlideContent) and s.title for s in slides)

    def test_slides_quote_fitted_numbers(self, deck_context: DeckContext):
        """Test the fitting slide shows the statsmodels call used."""
        fitting = {s.slide_id: s for s in generate_all_slides(deck_context)}["fitting"]
        assert 'smf.mixedlm("y ~ x"' in fitting.code
        assert "fixed_effects" in fitting.table_names

    def test_tables(self, deck_context: DeckContext):
        """Test every slide table is built."""
        tables = _build_tables(deck_context)

        assert {"group_summary", "fixed_effects", "estimates", "variance_components",
                "shrinkage", "estimation_error"} <= set(tables)
        assert "exercise_preview" not in tables
        assert list(tables["fixed_effects"]["Term"]) == ["Intercept", "x"]
        assert tables["variance_components"]["Component"].iloc[-1] == "ICC"
        assert tables["shrinkage"]["n"].is_monotonic_increasing
        assert "Population" in tables["shrinkage"].columns


class TestHtmlBuilder:
    """Tests for html_table and build_deck."""

    def test_html_table_formatting(self):
        """Test floats, NaN and booleans are formatted."""
        df = pd.DataFrame({"a": [1.23456, np.nan], "ok": [True, False], "g": ["x", "y"]})
        html = html_table(df, caption="Demo", decimals=2)

        assert "<caption>Demo</caption>" in html
        assert "<td>1.23</td>" in html
        assert "<td></td>" in html
        assert "<td>yes</td>" in html and "<td>no</td>" in html

    def test_build_deck(self, temp_dir: Path):
        """Test slides, figures, tables and equations are rendered."""
        slides = [
            SlideContent(slide_id="title", title="Deck"),
            SlideContent(
                slide_id="body",
                title="Body",
                paragraphs=["Some text"],
                equations=[r"y_{ij} = \beta_0 + u_j"],
                code="fit = model.fit()  # a < b",
                figure_names=["fig", "absent"],
                table_names=["tab"],
                notes=["Speaker note"],
            ),
        ]
        figures = [FigureResult(name="fig", paths=[], png_base64="QUJD", caption="Cap")]
        out = build_deck(slides, figures, {"tab": "<table><tr><td>7</td></tr></table>"}, temp_dir / "deck.html")

        html = out.read_text(encoding="utf-8")
        assert out == temp_dir / "deck.html"
        assert 'id="title"' in html and 'id="body"' in html
        assert "data:image/png;base64,QUJD" in html
        assert "<figcaption>Cap</figcaption>" in html
        assert "<td>7</td>" in html
        assert r"$$y_{ij} = \beta_0 + u_j$$" in html
        assert "a &lt; b" in html
        assert "Speaker note" in html
        assert "mathjax" in html.lower()


class TestCli:
    """End-to-end tests for the deck CLI."""

    def test_main_builds_deck(self, sample_config_file: Path, temp_dir: Path, restore_root_logger):
        """Test a full build writes the deck and its artifacts."""
        out = temp_dir / "out"
        code = main(["--config", str(sample_config_file), "--output-dir", str(out), "bootstrap.n_bootstrap=10"])

        assert code == 0
        html = (out / "deck.html").read_text(encoding="utf-8")
        for slide_id in SLIDE_ORDER:
            assert f'id="{slide_id}"' in html
        assert (out / "tables" / "estimates.csv").exists()
        assert (out / "figures" / "pooling_comparison.png").exists()
        assert (out / "data" / "dataset.csv").exists()
        assert (out / "data" / "truth.csv").exists()
        assert (out / "build.log").exists()

        with open(out / "data" / "summary.json") as f:
            summary = json.load(f)
        assert summary["seed"] == 7
        assert set(summary["fits"]) == {"full", "none", "partial"}
        assert summary["bootstrap_ci"]["n_bootstrap"] <= 10
        assert summary["exercise"]["fetched"] is False

    def test_main_without_group_variation(self, sample_config_file: Path, temp_dir: Path, restore_root_logger):
        """Test a deck still builds when the groups do not differ at all."""
        out = temp_dir / "flat"
        code = main(
            [
                "--config", str(sample_config_file),
                "--output-dir", str(out),
                "simulation.intercept_sd=0",
                "simulation.slope_sd=0",
                "bootstrap.n_bootstrap=10",
            ]
        )

        assert code == 0
        assert (out / "deck.html").exists()
        assert (out / "tables" / "shrinkage.csv").exists()

    def test_main_when_every_optimizer_fails(self, sample_config_file: Path, temp_dir: Path, restore_root_logger):
        """Test failed mixed fits fall back to the zero-variance answer instead of aborting."""
        out = temp_dir / "failed"
        with mock.patch.object(MixedLM, "fit", side_effect=np.linalg.LinAlgError("Singular matrix")):
            code = main(["--config", str(sample_config_file), "--output-dir", str(out), "bootstrap.n_bootstrap=10"])

        assert code == 0
        html = (out / "deck.html").read_text(encoding="utf-8")
        assert "every optimizer fails" in html
        with open(out / "data" / "summary.json") as f:
            summary = json.load(f)
        assert summary["fits"]["partial"]["diagnostics"]["fallback"] is True
        assert summary["fits"]["partial"]["intercept_var"] == 0.0

    def test_missing_config(self, temp_dir: Path, restore_root_logger):
        """Test a missing config file exits with code 2."""
        assert main(["--config", str(temp_dir / "nope.yaml")]) == 2

    def test_invalid_override(self, sample_config_file: Path, temp_dir: Path, restore_root_logger):
        """Test an invalid config value exits with code 2."""
        code = main(
            ["--config", str(sample_config_file), "--output-dir", str(temp_dir / "o"), "data.source=database"]
        )
        assert code == 2
