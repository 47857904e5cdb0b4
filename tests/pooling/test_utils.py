# tests/pooling/test_utils.py
"""Tests for output paths, logging setup and reproducibility artifacts."""

import json
import logging
from pathlib import Path

import pytest
import yaml

from pooling.utils.logging import setup_logging
from pooling.utils.paths import DeckPaths
from pooling.utils.reproducibility import (
    check_reproducibility,
    compute_config_hash,
    get_environment_info,
    load_run_manifest,
    save_reproducibility_artifacts,
)


class TestDeckPaths:
    """Tests for DeckPaths."""

    def test_create_layout(self, temp_dir: Path):
        """Test the directory layout under the output root."""
        paths = DeckPaths.create(temp_dir / "deck")

        assert paths.figures_dir == temp_dir / "deck" / "figures"
        assert paths.tables_dir.is_dir()
        assert paths.meta_dir.is_dir()
        assert paths.cache_dir == temp_dir / "deck" / "cache"
        assert paths.deck_html == temp_dir / "deck" / "deck.html"
        assert paths.summary_json.parent == paths.data_dir

    def test_external_cache_dir(self, temp_dir: Path):
        """Test a cache directory outside the output tree."""
        paths = DeckPaths.create(temp_dir / "deck", cache_dir=temp_dir / "shared_cache")
        assert paths.cache_dir == temp_dir / "shared_cache"
        assert paths.cache_dir.is_dir()

    def test_no_dirs_without_make_dirs(self, temp_dir: Path):
        """Test nothing is created when make_dirs is False."""
        paths = DeckPaths.create(temp_dir / "deck", make_dirs=False)
        assert not paths.output_dir.exists()
        paths.ensure()
        assert paths.figures_dir.is_dir()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_log_file(self, temp_dir: Path, restore_root_logger):
        """Test that messages reach the log file in the run directory."""
        setup_logging(temp_dir, log_filename="test.log")
        logging.getLogger("pooling.test").info("hello deck")
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = (temp_dir / "test.log").read_text()
        assert "hello deck" in content
        assert " - pooling.test - INFO - " in content

    def test_level_by_name(self, restore_root_logger):
        """Test that level names are accepted."""
        root = setup_logging(level="warning")
        assert root.level == logging.WARNING

    def test_unknown_level(self, restore_root_logger):
        """Test that an unknown level name is rejected."""
        with pytest.raises(ValueError, match="Unknown logging level"):
            setup_logging(level="LOUD")


class TestReproducibility:
    """Tests for run manifests."""

    def test_config_hash_stable(self):
        """Test the hash ignores key order and changes with values."""
        a = compute_config_hash({"seed": 1, "model": {"reml": True}})
        b = compute_config_hash({"model": {"reml": True}, "seed": 1})
        c = compute_config_hash({"model": {"reml": False}, "seed": 1})

        assert a == b
        assert a != c
        assert len(a) == 12

    def test_environment_records_statsmodels(self):
        """Test the environment capture includes the statsmodels version."""
        import statsmodels

        env = get_environment_info()
        assert env.statsmodels_version == statsmodels.__version__

    def test_save_and_check(self, temp_dir: Path):
        """Test artifacts are written and match the current environment."""
        config = {"seed": 5, "deck": {"title": "t"}}
        meta_dir = save_reproducibility_artifacts(temp_dir / "meta", config, "configs/deck.yaml")

        manifest = load_run_manifest(meta_dir)
        assert manifest["seed"] == 5
        assert manifest["config_path"] == "configs/deck.yaml"
        assert manifest["config_hash"] == compute_config_hash(config)

        with open(meta_dir / "config.yaml") as f:
            assert yaml.safe_load(f) == config

        results = check_reproducibility(meta_dir)
        assert results["manifest_found"] is True
        assert results["python_version_match"] is True
        assert results["statsmodels_version_match"] is True

    def test_missing_manifest(self, temp_dir: Path):
        """Test check_reproducibility without a manifest."""
        assert load_run_manifest(temp_dir) is None
        assert check_reproducibility(temp_dir) == {"manifest_found": False}

    def test_manifest_is_json(self, temp_dir: Path):
        """Test the manifest is plain JSON with an environment block."""
        save_reproducibility_artifacts(temp_dir, {"seed": 1}, "x.yaml")
        with open(temp_dir / "run_manifest.json") as f:
            data = json.load(f)
        assert "environment" in data
        assert "git" in data
