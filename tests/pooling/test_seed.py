# tests/pooling/test_seed.py
"""Tests for seed utilities."""

import random

import numpy as np
import pytest

from pooling.utils.seed import set_seed


class TestSetSeed:
    """Tests for set_seed function."""

    def test_set_seed_reproducibility(self):
        """Test that set_seed produces reproducible random numbers."""
        rng1 = set_seed(42)
        rand1_generator = rng1.normal(size=10).tolist()
        rand1_numpy = np.random.rand(10).tolist()
        rand1_python = [random.random() for _ in range(10)]

        rng2 = set_seed(42)
        rand2_generator = rng2.normal(size=10).tolist()
        rand2_numpy = np.random.rand(10).tolist()
        rand2_python = [random.random() for _ in range(10)]

        assert rand1_generator == rand2_generator
        assert rand1_numpy == rand2_numpy
        assert rand1_python == rand2_python

    def test_different_seeds_different_results(self):
        """Test that different seeds produce different results."""
        rand1 = set_seed(42).normal(size=10)
        rand2 = set_seed(123).normal(size=10)

        assert not np.allclose(rand1, rand2)

    def test_returns_generator(self):
        """Test that a numpy Generator is returned."""
        assert isinstance(set_seed(0), np.random.Generator)

    def test_set_seed_negative(self):
        """Test set_seed rejects negative seed."""
        with pytest.raises(ValueError, match="not in bounds"):
            set_seed(-1)

    def test_set_seed_too_large(self):
        """Test set_seed rejects seeds beyond 32 bits."""
        with pytest.raises(ValueError, match="not in bounds"):
            set_seed(2**32)
