# src/pooling/utils/config.py
"""OmegaConf configuration for the deck build.

The deck is driven by one YAML file (``pooling/configs/deck.yaml``). Any value can be
overridden from the command line in ``key=value`` form:

    pooling-deck seed=7 data.source=bundled model.random_slope=false

``validate_config`` checks the fields every build reads before any model is
fitted, so a typo fails in milliseconds rather than after the bootstrap.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from omegaconf import DictConfig, ListConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException

logger = logging.getLogger(__name__)

# Shipped as package data so an installed pooling-deck has a default
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "deck.yaml"

DATA_SOURCES = ("simulate", "bundled", "csv")

# Dotted path -> expected type of every field the build reads unconditionally
DECK_SCHEMA: Dict[str, type] = {
    "seed": int,
    "paths.output_dir": str,
    "data.source": str,
    "data.columns.response": str,
    "data.columns.predictor": str,
    "data.columns.group": str,
    "simulation.n_groups": int,
    "simulation.intercept": float,
    "simulation.slope": float,
    "simulation.residual_sd": float,
    "simulation.x_range": list,
    "model.random_slope": bool,
    "model.reml": bool,
    "model.methods": list,
    "deck.title": str,
    "deck.figure_formats": list,
}


class ConfigError(Exception):
    """Configuration validation error."""


def load_config(
    config_path: Union[str, Path],
    overrides: Optional[List[str]] = None,
    resolve: bool = True,
) -> DictConfig:
    """Load the deck YAML and apply ``key=value`` overrides.

    Args:
        config_path: Path to YAML configuration file.
        overrides: Dotlist overrides, e.g. ``["seed=7", "bootstrap.enabled=false"]``.
        resolve: Resolve ``${...}`` interpolations after the overrides, so
            ``paths.cache_dir`` follows an overridden ``paths.output_dir``.

    Returns:
        OmegaConf DictConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigError: If the YAML or an override cannot be parsed or resolved.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        cfg = OmegaConf.load(config_path)
        if overrides:
            cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))
        if resolve:
            OmegaConf.resolve(cfg)
    except (OmegaConfBaseException, yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

    logger.info(
        f"Loaded config from {config_path}"
        + (f" with {len(overrides)} override(s)" if overrides else "")
    )
    return cfg


def _type_error(path: str, value: Any, expected: type) -> Optional[str]:
    if expected is list:
        ok = isinstance(value, (list, tuple, ListConfig))
    elif expected is float:
        # YAML writes 10.0 as 10 often enough
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, expected)
    if ok:
        return None
    return f"Invalid type for {path}: expected {expected.__name__}, got {type(value).__name__}"


def validate_config(
    cfg: DictConfig,
    schema: Optional[Dict[str, type]] = None,
) -> None:
    """Check required fields, their types and the data source settings.

    Args:
        cfg: Configuration to validate.
        schema: Dotted path -> expected type. Defaults to ``DECK_SCHEMA``.

    Raises:
        ConfigError: Listing every problem found, one per line.
    """
    errors = []
    for path, expected in (schema or DECK_SCHEMA).items():
        value = OmegaConf.select(cfg, path, default=None, throw_on_missing=False)
        if value is None:
            errors.append(f"Missing required field: {path}")
            continue
        problem = _type_error(path, value, expected)
        if problem:
            errors.append(problem)

    source = OmegaConf.select(cfg, "data.source", default=None)
    if source is not None and source not in DATA_SOURCES:
        errors.append(f"Invalid value for data.source: {source!r} (expected one of {DATA_SOURCES})")
    if source == "csv" and not OmegaConf.select(cfg, "data.path", default=None):
        errors.append("Missing required field: data.path (required when data.source=csv)")

    if errors:
        raise ConfigError("Configuration validation failed:\n  " + "\n  ".join(errors))
    logger.debug("Configuration validation passed")


def to_dict(cfg: DictConfig, resolve: bool = True) -> Dict[str, Any]:
    """Plain-Python copy of a config (or config section)."""
    return OmegaConf.to_container(cfg, resolve=resolve)


def merge_configs(*configs: DictConfig) -> DictConfig:
    """Merge configs; later ones win."""
    return OmegaConf.merge(*configs)


def save_config(cfg: DictConfig, save_path: Union[str, Path], resolve: bool = True) -> None:
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)
    with open(save_path, "w") as f:
        OmegaConf.save(cfg, f, resolve=resolve)
    logger.info(f"Saved config to: {save_path}")


def get_value(cfg: DictConfig, path: str, default: Any = None) -> Any:
    """Dotted lookup that treats missing and ``null`` alike.

    Example:
        >>> n_boot = get_value(cfg, "bootstrap.n_bootstrap", default=500)
    """
    value = OmegaConf.select(cfg, path, default=None)
    return value if value is not None else default
