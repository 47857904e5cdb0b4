# src/pooling/deck/__init__.py
"""
Slide deck assembly.

Components:
- context: DeckContext, everything the slides read, computed once
- figures: Slide figures, saved to disk and base64-encoded
- narrative: Data-driven slide text
- html_builder: Jinja2 rendering of the self-contained HTML deck
- cli: The ``pooling-deck`` command
"""

from .context import DeckContext, build_context
from .figures import FigureResult, generate_all_figures
from .html_builder import build_deck, html_table
from .narrative import SlideContent, generate_all_slides

__all__ = [
    "DeckContext",
    "build_context",
    "FigureResult",
    "generate_all_figures",
    "build_deck",
    "html_table",
    "SlideContent",
    "generate_all_slides",
]
