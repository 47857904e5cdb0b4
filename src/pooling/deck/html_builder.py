"""HTML slide deck builder using Jinja2.

Renders the deck template with slides, figures and tables into a single
self-contained HTML file with base64-embedded images.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from jinja2 import Environment, FileSystemLoader

from pooling.deck.figures import FigureResult
from pooling.deck.narrative import SlideContent
from pooling.deck.style import THEME

logger = logging.getLogger(__name__)

# Template directory
_TEMPLATE_DIR = Path(__file__).parent / "templates"
_TEMPLATE_NAME = "deck.html.j2"

MATHJAX_URL = "https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"


def _get_css(theme: Optional[Dict[str, str]] = None) -> str:
    """Return inline CSS for the deck."""
    t = {**THEME, **(theme or {})}
    return f"""
*, *::before, *::after {{ box-sizing: border-box; margin: 0; padding: 0; }}

html, body {{
    height: 100%;
    background: {t['background']};
    color: {t['ink']};
    font-family: "Source Sans Pro", "Helvetica Neue", Arial, sans-serif;
}}

.slide {{
    display: none;
    min-height: 100vh;
    max-width: 1200px;
    margin: 0 auto;
    padding: 48px 64px 72px;
}}
.slide.active {{ display: block; }}

.slide h1 {{ font-size: 44px; margin-bottom: 24px; }}
.slide h2 {{
    font-size: 32px;
    padding-bottom: 8px;
    margin-bottom: 20px;
    border-bottom: 3px solid {t['accent']};
}}
.slide p {{ font-size: 21px; line-height: 1.5; margin-bottom: 14px; }}
.slide ul {{ margin: 8px 0 16px 28px; }}
.slide li {{ font-size: 20px; line-height: 1.5; margin-bottom: 6px; }}

.slide.title {{ display: none; text-align: center; padding-top: 22vh; }}
.slide.title.active {{ display: block; }}
.slide.title p {{ color: {t['muted']}; font-size: 24px; }}

.equation {{ font-size: 20px; margin: 12px 0; overflow-x: auto; }}

pre.code {{
    background: {t['code_bg']};
    border-left: 4px solid {t['accent']};
    padding: 12px 16px;
    margin: 12px 0 18px;
    font-family: "Fira Code", "Menlo", monospace;
    font-size: 16px;
    overflow-x: auto;
}}
code {{ font-family: "Fira Code", "Menlo", monospace; font-size: 0.92em; }}

figure {{ margin: 16px 0; text-align: center; }}
figure img {{ max-width: 100%; max-height: 62vh; }}
figcaption {{ font-size: 16px; color: {t['muted']}; margin-top: 6px; }}

table {{
    border-collapse: collapse;
    margin: 12px auto;
    font-size: 16px;
}}
caption {{ font-size: 15px; color: {t['muted']}; margin-bottom: 6px; caption-side: top; }}
th, td {{ padding: 4px 12px; border-bottom: 1px solid {t['rule']}; text-align: right; }}
th {{ border-bottom: 2px solid {t['ink']}; }}
td:first-child, th:first-child {{ text-align: left; }}

.notes {{
    display: none;
    margin-top: 24px;
    padding: 12px 16px;
    border: 1px dashed {t['muted']};
    font-size: 16px;
    color: {t['muted']};
}}
body.show-notes .notes {{ display: block; }}

.footer {{
    position: fixed;
    bottom: 12px;
    right: 24px;
    font-size: 14px;
    color: {t['muted']};
}}

@media print {{
    .slide, .slide.title {{ display: block; page-break-after: always; min-height: auto; }}
    .footer {{ display: none; }}
}}
"""


def _format_cell(val: Any, decimals: int) -> str:
    if isinstance(val, (bool, np.bool_)):
        return "yes" if val else "no"
    if isinstance(val, (float, np.floating)):
        return "" if np.isnan(val) else f"{val:.{decimals}f}"
    return str(val)


def html_table(df: pd.DataFrame, caption: str = "", decimals: int = 2) -> str:
    """Convert a DataFrame to a styled HTML table.

    Args:
        df: Data to render.
        caption: Optional table caption.
        decimals: Decimal places for floats.

    Returns:
        HTML string.
    """
    html = "<table>\n"
    if caption:
        html += f"<caption>{caption}</caption>\n"

    # Header
    html += "<thead><tr>"
    for col in df.columns:
        html += f"<th>{col}</th>"
    html += "</tr></thead>\n"

    # Body
    html += "<tbody>\n"
    for _, row in df.iterrows():
        html += "<tr>"
        for val in row:
            html += f"<td>{_format_cell(val, decimals)}</td>"
        html += "</tr>\n"
    html += "</tbody>\n</table>"

    return html


def build_deck(
    slides: List[SlideContent],
    figures: List[FigureResult],
    tables: Dict[str, str],
    output_path: Path,
    title: str = "Mixed-effects models",
    theme: Optional[Dict[str, str]] = None,
    mathjax_url: str = MATHJAX_URL,
) -> Path:
    """Build the complete HTML deck.

    Args:
        slides: Ordered list of slides.
        figures: Generated figure results.
        tables: Named HTML table strings.
        output_path: Where to write deck.html.
        title: Document title.
        theme: Overrides for the colour theme.
        mathjax_url: MathJax script used to typeset the equations.

    Returns:
        Path to the generated deck.html.
    """
    # Build figure lookup by name
    fig_lookup: Dict[str, FigureResult] = {f.name: f for f in figures}

    missing = sorted(
        {name for s in slides for name in s.figure_names if name not in fig_lookup}
        | {name for s in slides for name in s.table_names if name not in tables}
    )
    if missing:
        logger.info("Not rendered (not generated for this dataset): %s", ", ".join(missing))

    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=False,
    )
    template = env.get_template(_TEMPLATE_NAME)

    html = template.render(
        title=title,
        generated_date=datetime.now().strftime("%Y-%m-%d %H:%M"),
        slides=slides,
        figures=fig_lookup,
        tables=tables,
        css=_get_css(theme),
        mathjax_url=mathjax_url,
    )

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(html, encoding="utf-8")
    logger.info("Deck written to %s (%.1f KB)", output_path, output_path.stat().st_size / 1024)

    return output_path
