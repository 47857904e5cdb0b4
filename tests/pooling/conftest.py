# tests/pooling/conftest.py
"""Shared fixtures for pooling tests."""

import logging
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest
import yaml

from pooling.data.simulate import SimulatedData, SimulationConfig, simulate_clustered_data
from pooling.models.base import ModelSpec
from pooling.models.comparison import PoolingComparison, fit_all


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers back after setup_logging replaces them."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def sample_config_dict() -> Dict:
    """Provide a small but complete deck configuration."""
    return {
        "seed": 7,
        "paths": {"output_dir": "/tmp/pooling_deck", "cache_dir": None},
        "logging": {"level": "INFO", "log_file": "build.log"},
        "data": {
            "source": "simulate",
            "bundled_name": "classroom",
            "path": None,
            "columns": {"response": "y", "predictor": "x", "group": "group"},
        },
        "simulation": {
            "n_groups": 6,
            "group_sizes": [4, 6, 8, 12, 16, 24],
            "n_per_group": 10,
            "intercept": 10.0,
            "slope": 2.0,
            "intercept_sd": 3.0,
            "slope_sd": 0.5,
            "re_correlation": 0.0,
            "residual_sd": 1.5,
            "x_range": [0.0, 10.0],
        },
        "model": {
            "random_slope": False,
            "reml": True,
            "methods": ["lbfgs", "bfgs", "cg"],
            "maxiter": 300,
            "singular_tol": 1.0e-4,
        },
        "bootstrap": {"enabled": True, "n_bootstrap": 20, "ci": 0.95, "progress": False},
        "lrt": {"enabled": True},
        "caveat": {"enabled": True, "n_groups": 5, "n_per_group": 4, "slope_sd": 0.0},
        "exercise": {
            "url": "https://example.org/data/sleepstudy.csv",
            "fetch": False,
            "columns": {"response": "Reaction", "predictor": "Days", "group": "Subject"},
        },
        "deck": {
            "title": "Test deck",
            "subtitle": "Pooling",
            "author": "",
            "figure_formats": ["png"],
        },
    }


@pytest.fixture
def sample_config_file(temp_dir: Path, sample_config_dict: Dict) -> Path:
    """Create a sample config file."""
    config_path = temp_dir / "deck.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return config_path


@pytest.fixture
def sim_config() -> SimulationConfig:
    """Unbalanced random-intercept-and-slope simulation."""
    return SimulationConfig(
        n_groups=6,
        group_sizes=[4, 6, 8, 12, 16, 24],
        intercept=10.0,
        slope=2.0,
        intercept_sd=3.0,
        slope_sd=0.5,
        residual_sd=1.5,
        seed=11,
    )


@pytest.fixture
def simulated(sim_config: SimulationConfig) -> SimulatedData:
    """Simulated unbalanced dataset."""
    return simulate_clustered_data(sim_config)


@pytest.fixture
def balanced_data() -> SimulatedData:
    """Balanced data with random intercepts only (identical true slopes)."""
    config = SimulationConfig(
        n_groups=8,
        n_per_group=10,
        intercept=5.0,
        slope=1.0,
        intercept_sd=2.0,
        slope_sd=0.0,
        residual_sd=1.0,
        seed=3,
    )
    return simulate_clustered_data(config)


@pytest.fixture
def intercept_spec() -> ModelSpec:
    """Random-intercept model on the default columns."""
    return ModelSpec(random_slope=False)


@pytest.fixture
def slope_spec() -> ModelSpec:
    """Random-intercept-and-slope model on the default columns."""
    return ModelSpec(random_slope=True)


@pytest.fixture
def balanced_comparison(balanced_data: SimulatedData, intercept_spec: ModelSpec) -> PoolingComparison:
    """All three fits on the balanced random-intercept data."""
    return fit_all(balanced_data.data, intercept_spec)


@pytest.fixture
def unbalanced_comparison(simulated: SimulatedData, intercept_spec: ModelSpec) -> PoolingComparison:
    """All three fits on the unbalanced data."""
    return fit_all(simulated.data, intercept_spec)
