# tests/pooling/test_datasets.py
"""Tests for bundled, local and remote datasets."""

from pathlib import Path
from unittest import mock

import numpy as np
import pandas as pd
import pytest
import requests

from pooling.data.datasets import (
    BUNDLED_COLUMNS,
    ColumnMap,
    DatasetError,
    _cache_filename,
    fetch_dataset,
    load_bundled_dataset,
    load_csv_dataset,
    prepare_dataset,
    validate_dataset,
)

CSV_BYTES = b"Reaction,Days,Subject\n250.1,0,308\n258.7,1,308\n240.0,0,309\n251.5,1,309\n"
URL = "https://example.org/data/sleepstudy.csv"


def _mock_session(content: bytes = CSV_BYTES, error: Exception = None) -> mock.MagicMock:
    session = mock.MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        response = mock.MagicMock()
        response.content = content
        response.raise_for_status.return_value = None
        session.get.return_value = response
    return session


class TestColumnMap:
    """Tests for ColumnMap."""

    def test_from_dict(self):
        """Test construction from a mapping."""
        cols = ColumnMap.from_dict({"response": "y", "predictor": "x", "group": "g"})
        assert cols.required == ["g", "x", "y"]

    def test_intercept_only(self):
        """Test a mapping without a predictor."""
        cols = ColumnMap.from_dict({"response": "y", "group": "g"})
        assert cols.predictor is None
        assert cols.required == ["g", "y"]

    def test_missing_key(self):
        """Test a mapping without a group raises DatasetError."""
        with pytest.raises(DatasetError, match="missing"):
            ColumnMap.from_dict({"response": "y"})


class TestBundledDataset:
    """Tests for the dataset shipped with the package."""

    def test_load_classroom(self):
        """Test the classroom dataset loads with its documented columns."""
        df = load_bundled_dataset("classroom")
        cols = ColumnMap.from_dict(BUNDLED_COLUMNS["classroom"])

        assert set(cols.required) <= set(df.columns)
        assert len(df) == 122
        assert df["school"].nunique() == 10

    def test_unknown_name(self):
        """Test an unknown bundled dataset name."""
        with pytest.raises(DatasetError, match="Unknown bundled dataset"):
            load_bundled_dataset("nope")


class TestLoadCsv:
    """Tests for load_csv_dataset."""

    def test_load(self, temp_dir: Path):
        """Test loading a CSV from disk."""
        path = temp_dir / "d.csv"
        path.write_bytes(CSV_BYTES)
        df = load_csv_dataset(path)
        assert list(df.columns) == ["Reaction", "Days", "Subject"]

    def test_missing_file(self, temp_dir: Path):
        """Test a missing file raises DatasetError."""
        with pytest.raises(DatasetError, match="not found"):
            load_csv_dataset(temp_dir / "missing.csv")

    def test_empty_file(self, temp_dir: Path):
        """Test an empty file raises DatasetError."""
        path = temp_dir / "empty.csv"
        path.write_text("")
        with pytest.raises(DatasetError, match="Failed to parse"):
            load_csv_dataset(path)

    def test_select_mapped_columns(self, temp_dir: Path):
        """Test only the mapped columns are kept, in role order."""
        path = temp_dir / "d.csv"
        path.write_bytes(CSV_BYTES)
        cols = ColumnMap(response="Reaction", predictor="Days", group="Subject")

        df = load_csv_dataset(path, cols)
        assert list(df.columns) == cols.required
        assert len(df) == 4

    def test_missing_mapped_column(self, temp_dir: Path):
        """Test a mapped column absent from the file raises DatasetError."""
        path = temp_dir / "d.csv"
        path.write_bytes(CSV_BYTES)
        cols = ColumnMap(response="Reaction", predictor="Hours", group="Subject")

        with pytest.raises(DatasetError, match="missing columns"):
            load_csv_dataset(path, cols)


class TestFetchDataset:
    """Tests for fetch_dataset with the network mocked."""

    def test_cache_filename(self):
        """Test the cache filename encodes host and file name."""
        assert _cache_filename(URL) == "example_org__sleepstudy.csv"

    def test_download_writes_cache(self, temp_dir: Path):
        """Test a successful download is written to the cache."""
        session = _mock_session()
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            path = fetch_dataset(URL, temp_dir, timeout=5)

        assert path.read_bytes() == CSV_BYTES
        session.get.assert_called_once_with(URL, timeout=5)
        session.close.assert_called_once()

    def test_no_partial_file_left(self, temp_dir: Path):
        """Test the download is moved into place, leaving only the cache file."""
        session = _mock_session()
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            path = fetch_dataset(URL, temp_dir)

        assert [p.name for p in temp_dir.iterdir()] == [path.name]

    def test_failed_write_keeps_old_cache(self, temp_dir: Path):
        """Test a write that fails midway leaves the previous cache intact."""
        target = temp_dir / _cache_filename(URL)
        target.write_bytes(b"old")
        session = _mock_session()
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            with mock.patch.object(Path, "replace", side_effect=OSError("disk full")):
                with pytest.raises(OSError, match="disk full"):
                    fetch_dataset(URL, temp_dir, force=True)

        assert target.read_bytes() == b"old"

    def test_cached_copy_reused(self, temp_dir: Path):
        """Test no request is made when a cached copy exists."""
        (temp_dir / _cache_filename(URL)).write_bytes(CSV_BYTES)
        session = _mock_session()
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            fetch_dataset(URL, temp_dir)

        session.get.assert_not_called()

    def test_force_redownloads(self, temp_dir: Path):
        """Test force=True ignores the cache."""
        (temp_dir / _cache_filename(URL)).write_bytes(b"old")
        session = _mock_session()
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            path = fetch_dataset(URL, temp_dir, force=True)

        assert path.read_bytes() == CSV_BYTES

    def test_failure_falls_back_to_cache(self, temp_dir: Path):
        """Test a failed forced download falls back to the cached copy."""
        (temp_dir / _cache_filename(URL)).write_bytes(b"old")
        session = _mock_session(error=requests.ConnectionError("offline"))
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            path = fetch_dataset(URL, temp_dir, force=True)

        assert path.read_bytes() == b"old"

    def test_failure_without_cache(self, temp_dir: Path):
        """Test a failed download with nothing cached raises DatasetError."""
        session = _mock_session(error=requests.Timeout("slow"))
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            with pytest.raises(DatasetError, match="Failed to download"):
                fetch_dataset(URL, temp_dir)

    def test_http_error(self, temp_dir: Path):
        """Test an HTTP error status raises DatasetError."""
        session = _mock_session()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        with mock.patch("pooling.data.datasets._build_session", return_value=session):
            with pytest.raises(DatasetError):
                fetch_dataset(URL, temp_dir)

    def test_non_http_url(self, temp_dir: Path):
        """Test non-HTTP URLs are rejected."""
        with pytest.raises(DatasetError, match="http"):
            fetch_dataset("file:///etc/passwd", temp_dir)


class TestPrepareDataset:
    """Tests for validate_dataset and prepare_dataset."""

    @pytest.fixture
    def raw(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "Subject": [308, 308, 309, 309, 310],
                "Days": [0, 1, 0, 1, 0],
                "Reaction": [250.1, 258.7, np.nan, 251.5, 260.0],
                "Extra": list("abcde"),
            }
        )

    def test_rename_and_clean(self, raw: pd.DataFrame):
        """Test selection, renaming, dropna and categorical groups."""
        source = ColumnMap("Reaction", "Days", "Subject")
        target = ColumnMap("y", "x", "group")
        out = prepare_dataset(raw, source, target)

        assert list(out.columns) == ["group", "x", "y"]
        assert len(out) == 4
        assert isinstance(out["group"].dtype, pd.CategoricalDtype)
        assert list(out["group"].cat.categories) == ["308", "309", "310"]

    def test_missing_column(self, raw: pd.DataFrame):
        """Test a missing column raises DatasetError."""
        with pytest.raises(DatasetError, match="missing columns"):
            validate_dataset(raw, ColumnMap("Reaction", "Hours", "Subject"))

    def test_non_numeric_response(self, raw: pd.DataFrame):
        """Test a non-numeric response raises DatasetError."""
        with pytest.raises(DatasetError, match="numeric"):
            validate_dataset(raw, ColumnMap("Extra", "Days", "Subject"))

    def test_single_group(self, raw: pd.DataFrame):
        """Test one group is not enough for a mixed model."""
        one = raw.assign(Subject=1)
        with pytest.raises(DatasetError, match="at least 2 groups"):
            validate_dataset(one, ColumnMap("Reaction", "Days", "Subject"))

    def test_predictor_mismatch(self, raw: pd.DataFrame):
        """Test source and target maps must agree on having a predictor."""
        with pytest.raises(DatasetError, match="predictor"):
            prepare_dataset(raw, ColumnMap("Reaction", "Days", "Subject"), ColumnMap("y", None, "g"))
