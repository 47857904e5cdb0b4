# src/pooling/utils/paths.py
"""Path management for deck builds.

Layout:
    output_dir/
    ├── deck.html          # The rendered slide deck
    ├── build.log
    ├── figures/           # PNG/PDF copies of every slide figure
    ├── tables/            # CSV exports of every slide table
    ├── data/              # Dataset used for the build + summary.json
    ├── cache/             # Downloaded classroom datasets
    └── meta/              # Reproducibility artifacts

Example:
    >>> from pooling.utils.paths import DeckPaths
    >>> paths = DeckPaths.create("outputs/deck")
    >>> paths.deck_html
    PosixPath('outputs/deck/deck.html')
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class DeckPaths:
    """Paths for a single deck build.

    Attributes:
        output_dir: Root output directory.
        figures_dir: Directory for figure files.
        tables_dir: Directory for CSV tables.
        data_dir: Directory for the dataset and summary JSON.
        cache_dir: Directory for downloaded datasets.
        meta_dir: Directory for reproducibility artifacts.
        deck_html: Path to the rendered deck.
        summary_json: Path to the machine-readable summary.
    """

    output_dir: Path
    figures_dir: Path
    tables_dir: Path
    data_dir: Path
    cache_dir: Path
    meta_dir: Path
    deck_html: Path
    summary_json: Path

    @classmethod
    def create(
        cls,
        output_dir: Union[str, Path],
        cache_dir: Optional[Union[str, Path]] = None,
        make_dirs: bool = True,
    ) -> "DeckPaths":
        """Build the path layout under ``output_dir``.

        Args:
            output_dir: Root output directory.
            cache_dir: Optional cache directory outside the output tree.
            make_dirs: Create the directories on disk.

        Returns:
            DeckPaths instance.
        """
        output_dir = Path(output_dir)
        paths = cls(
            output_dir=output_dir,
            figures_dir=output_dir / "figures",
            tables_dir=output_dir / "tables",
            data_dir=output_dir / "data",
            cache_dir=Path(cache_dir) if cache_dir else output_dir / "cache",
            meta_dir=output_dir / "meta",
            deck_html=output_dir / "deck.html",
            summary_json=output_dir / "data" / "summary.json",
        )
        if make_dirs:
            paths.ensure()
        return paths

    def ensure(self) -> None:
        """Create all directories."""
        for directory in (
            self.output_dir,
            self.figures_dir,
            self.tables_dir,
            self.data_dir,
            self.cache_dir,
            self.meta_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Output tree ready under {self.output_dir}")
