# src/pooling/utils/reproducibility.py
"""Build manifests for the deck.

Every number on a slide comes from a statsmodels fit, and REML estimates can
move between statsmodels releases. The manifest written next to each deck
records what produced it: git state, library versions and a config hash.
"""

import hashlib
import json
import logging
import platform
import subprocess
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

MANIFEST_NAME = "run_manifest.json"
CONFIG_COPY_NAME = "config.yaml"

# Versions that can change a fitted number or a figure
_TRACKED_VERSIONS = ("python_version", "statsmodels_version")


@dataclass
class GitInfo:
    """Commit the deck was built from."""

    commit: str
    branch: str
    dirty: bool


@dataclass
class EnvironmentInfo:
    """Interpreter and numerical-library versions."""

    python_version: str
    platform: str
    numpy_version: str
    pandas_version: str
    scipy_version: str
    statsmodels_version: str
    matplotlib_version: str


@dataclass
class BuildManifest:
    """Everything needed to trace a deck back to its inputs."""

    built_at: str
    command: str
    config_path: str
    config_hash: str
    seed: Optional[int]
    environment: EnvironmentInfo
    git: Optional[GitInfo] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _git(*args: str, cwd: Optional[Path] = None) -> str:
    out = subprocess.check_output(["git", *args], cwd=cwd, stderr=subprocess.DEVNULL)
    return out.decode().strip()


def get_git_info(repo_path: Optional[Path] = None) -> Optional[GitInfo]:
    """Current commit, branch and dirty flag, or None outside a git checkout."""
    try:
        return GitInfo(
            commit=_git("rev-parse", "HEAD", cwd=repo_path),
            branch=_git("rev-parse", "--abbrev-ref", "HEAD", cwd=repo_path),
            dirty=bool(_git("status", "--porcelain", cwd=repo_path)),
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        logger.debug("Not a git checkout; manifest will have no git block")
        return None


def get_environment_info() -> EnvironmentInfo:
    import matplotlib
    import numpy
    import pandas
    import scipy
    import statsmodels

    return EnvironmentInfo(
        python_version=platform.python_version(),
        platform=platform.platform(),
        numpy_version=numpy.__version__,
        pandas_version=pandas.__version__,
        scipy_version=scipy.__version__,
        statsmodels_version=statsmodels.__version__,
        matplotlib_version=matplotlib.__version__,
    )


def compute_config_hash(config: Dict[str, Any]) -> str:
    """Short, key-order independent hash of a config dict."""
    payload = json.dumps(config, sort_keys=True, default=str).encode()
    return hashlib.md5(payload).hexdigest()[:12]


def save_reproducibility_artifacts(
    meta_dir: Path,
    config: Dict[str, Any],
    config_path: str,
) -> Path:
    """Write ``run_manifest.json`` and a copy of the resolved config.

    Args:
        meta_dir: Directory to write into (created if missing).
        config: Resolved deck configuration.
        config_path: Config file the build was started with.

    Returns:
        ``meta_dir``.
    """
    meta_dir = Path(meta_dir)
    meta_dir.mkdir(parents=True, exist_ok=True)

    manifest = BuildManifest(
        built_at=datetime.now().isoformat(timespec="seconds"),
        command=" ".join(sys.argv),
        config_path=str(config_path),
        config_hash=compute_config_hash(config),
        seed=config.get("seed"),
        environment=get_environment_info(),
        git=get_git_info(),
    )
    with open(meta_dir / MANIFEST_NAME, "w") as f:
        json.dump(manifest.to_dict(), f, indent=2)

    with open(meta_dir / CONFIG_COPY_NAME, "w") as f:
        yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Build manifest (config {manifest.config_hash}) written to {meta_dir}")
    return meta_dir


def load_run_manifest(meta_dir: Path) -> Optional[Dict[str, Any]]:
    path = Path(meta_dir) / MANIFEST_NAME
    if not path.exists():
        return None
    with open(path) as f:
        return json.load(f)


def check_reproducibility(meta_dir: Path, warn_on_mismatch: bool = True) -> Dict[str, bool]:
    """Compare the running environment with a saved manifest.

    Returns:
        ``{"manifest_found": False}`` without a manifest; otherwise one
        ``<key>_match`` flag per tracked version, plus ``git_commit_match``
        when both sides have git information.
    """
    manifest = load_run_manifest(meta_dir)
    if manifest is None:
        return {"manifest_found": False}

    results = {"manifest_found": True}
    current = asdict(get_environment_info())
    saved = manifest.get("environment") or {}
    for key in _TRACKED_VERSIONS:
        results[f"{key}_match"] = current[key] == saved.get(key)

    git = get_git_info()
    if git is not None and manifest.get("git"):
        results["git_commit_match"] = git.commit == manifest["git"]["commit"]

    if warn_on_mismatch:
        for key, ok in results.items():
            if not ok:
                logger.warning(f"Reproducibility check failed: {key}")
    return results
