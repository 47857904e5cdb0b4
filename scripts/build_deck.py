#!/usr/bin/env python
"""Build the mixed-models teaching deck.

Workflow:
1. Load configuration from YAML (plus key=value overrides)
2. Setup logging in the output directory
3. Simulate or load the dataset
4. Fit full, no and partial pooling
5. Generate figures, tables and slides
6. Write deck.html, summary.json and the run manifest

Usage:
    python scripts/build_deck.py
    python scripts/build_deck.py --config src/pooling/configs/deck.yaml data.source=bundled model.random_slope=false
"""

import sys

from pooling.deck.cli import main

if __name__ == "__main__":
    sys.exit(main())
