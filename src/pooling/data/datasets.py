# src/pooling/data/datasets.py
"""Dataset loading for the deck.

Three sources feed the slides:
- a CSV bundled inside the package (``resources/``), used when the deck is
  presented offline,
- any pre-serialized CSV on disk,
- a publicly hosted CSV downloaded over HTTP for the classroom exercise,
  cached locally so the exercise still works when the lecture-hall network
  does not.

Every source goes through :func:`prepare_dataset`, which maps the source's
column names onto the deck's canonical response/predictor/group names.
"""

import logging
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlparse

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

BUNDLED_DATASETS: Dict[str, str] = {
    "classroom": "classroom.csv",
}

# Column mapping of each bundled dataset
BUNDLED_COLUMNS: Dict[str, Dict[str, str]] = {
    "classroom": {"response": "score", "predictor": "hours", "group": "school"},
}


class DatasetError(Exception):
    """Raised when a dataset cannot be loaded or fails validation."""

    pass


@dataclass
class ColumnMap:
    """Mapping from source column names to their roles.

    Attributes:
        response: Numeric outcome column.
        predictor: Numeric predictor column (None for intercept-only data).
        group: Cluster label column.
    """

    response: str
    predictor: Optional[str]
    group: str

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "ColumnMap":
        try:
            return cls(
                response=mapping["response"],
                predictor=mapping.get("predictor"),
                group=mapping["group"],
            )
        except KeyError as e:
            raise DatasetError(f"Column mapping is missing {e}") from e

    @property
    def required(self) -> list:
        cols = [self.group, self.response]
        if self.predictor is not None:
            cols.insert(1, self.predictor)
        return cols


def load_bundled_dataset(name: str = "classroom") -> pd.DataFrame:
    """Load a CSV shipped with the package.

    Args:
        name: Dataset name (see ``BUNDLED_DATASETS``).

    Returns:
        Raw DataFrame with the dataset's own column names.

    Raises:
        DatasetError: If the name is unknown.
    """
    if name not in BUNDLED_DATASETS:
        raise DatasetError(
            f"Unknown bundled dataset '{name}'. Available: {sorted(BUNDLED_DATASETS)}"
        )

    resource = resources.files("pooling.data").joinpath("resources").joinpath(BUNDLED_DATASETS[name])
    with resource.open("r") as f:
        df = pd.read_csv(f)
    logger.info(f"Loaded bundled dataset '{name}' ({len(df)} rows)")
    return df


def load_csv_dataset(
    path: Union[str, Path],
    columns: Optional[ColumnMap] = None,
) -> pd.DataFrame:
    """Load a pre-serialized CSV dataset from disk.

    Args:
        path: CSV file.
        columns: Column roles in the file. When given, only those columns are
            returned and the file is rejected early if one is missing.

    Raises:
        DatasetError: If the file is missing, unparseable or lacks a mapped column.
    """
    path = Path(path)
    if not path.exists():
        raise DatasetError(f"Dataset file not found: {path}")
    try:
        df = pd.read_csv(path)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise DatasetError(f"Failed to parse {path}: {e}") from e

    if columns is not None:
        missing = [c for c in columns.required if c not in df.columns]
        if missing:
            raise DatasetError(f"{path} is missing columns {missing}; available: {list(df.columns)}")
        df = df[columns.required]
    logger.info(f"Loaded {len(df)} rows from {path}")
    return df


def _cache_filename(url: str) -> str:
    """Derive a stable cache filename from a URL."""
    parsed = urlparse(url)
    name = Path(parsed.path).name or "dataset.csv"
    host = re.sub(r"[^A-Za-z0-9]+", "_", parsed.netloc).strip("_")
    return f"{host}__{name}" if host else name


def _build_session(retries: int) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def fetch_dataset(
    url: str,
    cache_dir: Union[str, Path],
    timeout: float = 20.0,
    retries: int = 3,
    force: bool = False,
) -> Path:
    """Download a publicly hosted CSV into the cache.

    A cached copy is reused unless ``force`` is set. When the download fails
    and a cached copy exists, the cached copy is returned with a warning.

    Args:
        url: HTTP(S) URL of the CSV file.
        cache_dir: Directory for cached downloads.
        timeout: Request timeout in seconds.
        retries: Retries on connection errors and 429/5xx responses.
        force: Re-download even if a cached copy exists.

    Returns:
        Path to the local CSV.

    Raises:
        DatasetError: If the URL is not HTTP(S), or the download fails with no
            cached copy to fall back on.
    """
    if urlparse(url).scheme not in ("http", "https"):
        raise DatasetError(f"Only http(s) URLs are supported, got: {url}")

    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    target = cache_dir / _cache_filename(url)

    if target.exists() and not force:
        logger.info(f"Using cached dataset {target}")
        return target

    session = _build_session(retries)
    try:
        logger.info(f"Downloading {url}")
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        if target.exists():
            logger.warning(f"Download of {url} failed ({e}); using cached copy {target}")
            return target
        raise DatasetError(f"Failed to download {url}: {e}") from e
    finally:
        session.close()

    # Write then rename, so an interrupted download never leaves a truncated cache
    partial = target.with_name(target.name + ".part")
    partial.write_bytes(response.content)
    partial.replace(target)
    logger.info(f"Saved {len(response.content) / 1024:.1f} KB to {target}")
    return target


def validate_dataset(df: pd.DataFrame, columns: ColumnMap) -> None:
    """Check that a dataset can feed the pooling models.

    Raises:
        DatasetError: On missing columns, non-numeric response/predictor,
            an empty frame, or fewer than two groups.
    """
    missing = [c for c in columns.required if c not in df.columns]
    if missing:
        raise DatasetError(
            f"Dataset is missing columns {missing}; available: {list(df.columns)}"
        )
    if df.empty:
        raise DatasetError("Dataset has no rows")

    numeric = [columns.response] + ([columns.predictor] if columns.predictor else [])
    for col in numeric:
        if not pd.api.types.is_numeric_dtype(df[col]):
            raise DatasetError(f"Column '{col}' must be numeric, got {df[col].dtype}")

    n_groups = df[columns.group].nunique()
    if n_groups < 2:
        raise DatasetError(f"Need at least 2 groups for a mixed model, got {n_groups}")


def prepare_dataset(
    df: pd.DataFrame,
    source_columns: ColumnMap,
    target_columns: Optional[ColumnMap] = None,
) -> pd.DataFrame:
    """Select, rename and clean the columns the models need.

    Args:
        df: Raw dataset.
        source_columns: Column roles in ``df``.
        target_columns: Canonical names to rename to. Defaults to the source
            names (no renaming).

    Returns:
        A new DataFrame with only the mapped columns, the group column as a
        string category, and incomplete rows dropped.

    Raises:
        DatasetError: If validation fails.
    """
    validate_dataset(df, source_columns)
    target = target_columns or source_columns
    if (source_columns.predictor is None) != (target.predictor is None):
        raise DatasetError("Source and target column maps disagree on the predictor")

    rename = {
        source_columns.group: target.group,
        source_columns.response: target.response,
    }
    if source_columns.predictor is not None:
        rename[source_columns.predictor] = target.predictor

    out = df[source_columns.required].rename(columns=rename)

    n_before = len(out)
    out = out.dropna().reset_index(drop=True)
    if len(out) < n_before:
        logger.warning(f"Dropped {n_before - len(out)} rows with missing values")

    out[target.group] = out[target.group].astype(str)
    out[target.group] = pd.Categorical(
        out[target.group], categories=sorted(out[target.group].unique())
    )

    validate_dataset(out, target)
    return out
