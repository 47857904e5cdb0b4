# src/pooling/utils/seed.py
"""Reproducibility utilities.

Seeds Python's ``random`` module and NumPy, and hands out the
``numpy.random.Generator`` the simulation code draws from.
"""

import logging
import random

import numpy as np

logger = logging.getLogger(__name__)

_MAX_SEED = 2**32 - 1


def set_seed(seed: int) -> np.random.Generator:
    """Set random seed for reproducibility.

    Seeds:
    - Python's random module
    - NumPy's legacy global state (used by plotting jitter and scikit-learn)

    Args:
        seed: Random seed value in [0, 2**32 - 1].

    Returns:
        A fresh ``numpy.random.Generator`` seeded with ``seed``.

    Raises:
        ValueError: If the seed is out of bounds.

    Example:
        >>> from pooling.utils.seed import set_seed
        >>> rng = set_seed(42)
        >>> rng.normal()
    """
    if not 0 <= int(seed) <= _MAX_SEED:
        raise ValueError(f"Seed {seed} not in bounds [0, {_MAX_SEED}]")

    random.seed(seed)
    np.random.seed(seed)
    logger.info(f"Set random seed: {seed}")
    return np.random.default_rng(seed)
