# src/pooling/data/__init__.py
"""
Data for the deck: simulated clustered data, bundled and remote datasets,
and per-group descriptive tables.
"""

from .datasets import (
    BUNDLED_COLUMNS,
    ColumnMap,
    DatasetError,
    fetch_dataset,
    load_bundled_dataset,
    load_csv_dataset,
    prepare_dataset,
    validate_dataset,
)
from .simulate import (
    SimulatedData,
    SimulationConfig,
    group_labels,
    simulate_clustered_data,
)
from .summaries import format_summary_table, group_summary, overall_summary

__all__ = [
    "BUNDLED_COLUMNS",
    "ColumnMap",
    "DatasetError",
    "fetch_dataset",
    "load_bundled_dataset",
    "load_csv_dataset",
    "prepare_dataset",
    "validate_dataset",
    "SimulatedData",
    "SimulationConfig",
    "group_labels",
    "simulate_clustered_data",
    "format_summary_table",
    "group_summary",
    "overall_summary",
]
