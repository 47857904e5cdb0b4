# src/pooling/utils/__init__.py
"""
Utility functions for the deck build.

Components:
- config: OmegaConf loading, overrides and validation
- logging: Console + file logging setup
- seed: Seeding Python/NumPy and creating the simulation RNG
- paths: Output directory layout
- reproducibility: Git info, environment capture, run manifests
"""

from pooling.utils.config import (
    ConfigError,
    get_value,
    load_config,
    save_config,
    to_dict,
    validate_config,
)
from pooling.utils.logging import setup_logging
from pooling.utils.paths import DeckPaths
from pooling.utils.reproducibility import (
    BuildManifest,
    check_reproducibility,
    get_environment_info,
    get_git_info,
    save_reproducibility_artifacts,
)
from pooling.utils.seed import set_seed

__all__ = [
    # Config
    "ConfigError",
    "get_value",
    "load_config",
    "save_config",
    "to_dict",
    "validate_config",
    # Logging
    "setup_logging",
    # Paths
    "DeckPaths",
    # Reproducibility
    "BuildManifest",
    "check_reproducibility",
    "get_environment_info",
    "get_git_info",
    "save_reproducibility_artifacts",
    "set_seed",
]
