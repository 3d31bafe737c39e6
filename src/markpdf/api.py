"""Programmatic entry point."""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from markpdf.config import merge_configs
from markpdf.core.converter import ConversionOutput, ConversionRequest, Converter
from markpdf.core.engine import BrowserEngine
from markpdf.errors import ValidationError
from markpdf.server import StaticServer


async def md_to_pdf(
    path: Path | str | None = None,
    *,
    content: str | None = None,
    config: Mapping[str, Any] | None = None,
) -> ConversionOutput:
    """Convert a Markdown file or string.

    Starts a static server and a browser for this one conversion and shuts
    both down before returning. Nothing is written to disk unless ``dest``
    is set in config.

    Args:
        path: Markdown file to convert
        content: Markdown text to convert instead of a file
        config: Config options, e.g. ``{"as_html": True}`` or ``{"pdf_options": {...}}``

    Returns:
        ConversionOutput with PDF bytes, HTML text or DOCX bytes

    Raises:
        ValidationError: If neither or both of path and content are given
    """
    if (path is None) == (content is None):
        raise ValidationError("Input must have exactly one of path or content")

    source = Path(path) if path is not None else None
    request = ConversionRequest(path=source, content=content)

    layer = dict(config or {})
    if not layer.get("basedir"):
        layer["basedir"] = source.parent if source is not None else Path.cwd()
    layer.setdefault("dest", "")

    effective = merge_configs(layer)
    engine = BrowserEngine(effective.launch_options, devtools=effective.devtools)

    async with StaticServer(effective.basedir, effective.port) as server, engine:
        converter = Converter(engine=engine)
        return await converter.convert(request, effective.with_overrides(port=server.port))
