"""Asset discovery for bundled stylesheets.

Locates static assets shipped inside the markpdf package.
"""

from importlib.resources import files
from pathlib import Path

MARKDOWN_CSS = "markdown.css"


def get_static_dir() -> Path:
    """Return path to bundled static assets.

    Returns:
        Path to the static directory containing bundled stylesheets.

    Raises:
        FileNotFoundError: If static assets are not bundled.
    """
    static = files("markpdf").joinpath("static")
    if not static.is_dir():
        msg = "Bundled static assets not found. Reinstall markpdf with its package data."
        raise FileNotFoundError(msg)
    return Path(str(static))


def get_markdown_css_path() -> Path:
    """Return path to the default Markdown stylesheet."""
    return Path(str(files("markpdf").joinpath("static", MARKDOWN_CSS)))
