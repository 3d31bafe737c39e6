"""Front matter parsing.

A document may open with a fenced metadata header:

    ---
    document_title: Report
    pdf_options:
      format: Letter
    ---

The header is YAML by default. A language tag on the opening fence
(``---json``) or the ``language`` option selects another engine. Executable
engines such as ``js`` are recognized but disabled.
"""

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

DEFAULT_DELIMITER = "---"
DEFAULT_LANGUAGE = "yaml"

DISABLED_ENGINES = frozenset({"js", "javascript", "coffee", "coffeescript"})


def _load_yaml(raw: str) -> Any:
    return yaml.safe_load(raw)


def _load_json(raw: str) -> Any:
    return json.loads(raw) if raw.strip() else None


ENGINES: dict[str, Callable[[str], Any]] = {
    "yaml": _load_yaml,
    "yml": _load_yaml,
    "json": _load_json,
}


@dataclass(frozen=True)
class FrontMatterError:
    """Marker returned in place of metadata when the header is unusable."""

    message: str


@dataclass(frozen=True)
class FrontMatter:
    """Document split into body and metadata."""

    body: str
    metadata: dict[str, Any] | FrontMatterError = field(default_factory=dict)
    language: str | None = None

    @property
    def has_error(self) -> bool:
        return isinstance(self.metadata, FrontMatterError)


def _header_pattern(delimiter: str) -> re.Pattern[str]:
    fence = re.escape(delimiter)
    return re.compile(
        rf"\A{fence}[ \t]*(\w*)[ \t]*\r?\n(.*?)^{fence}[ \t]*(?:\r?\n|\Z)",
        re.DOTALL | re.MULTILINE,
    )


def parse_front_matter(text: str, options: Mapping[str, Any] | None = None) -> FrontMatter:
    """Split a document into its front matter and body.

    Args:
        text: Full document text
        options: Optional ``language`` (default engine) and ``delimiters``

    Returns:
        FrontMatter. Without a header the body is the full text and the
        metadata is empty. A disabled engine or non-mapping data yields a
        FrontMatterError in place of the metadata and the full text as body.

    Raises:
        yaml.YAMLError: If a YAML header is malformed
        ValueError: If a JSON header is malformed
    """
    options = options or {}
    delimiter = options.get("delimiters") or DEFAULT_DELIMITER
    if isinstance(delimiter, (list, tuple)):
        delimiter = delimiter[0]

    if not text.startswith(delimiter):
        return FrontMatter(body=text)

    match = _header_pattern(delimiter).match(text)
    if match is None:
        return FrontMatter(body=text)

    language = (match.group(1) or options.get("language") or DEFAULT_LANGUAGE).lower()
    raw = match.group(2)
    body = text[match.end() :]

    if language in DISABLED_ENGINES:
        return FrontMatter(
            body=text,
            metadata=FrontMatterError(f"Front matter engine '{language}' is disabled"),
            language=language,
        )

    engine = ENGINES.get(language)
    if engine is None:
        return FrontMatter(
            body=text,
            metadata=FrontMatterError(f"Unknown front matter language '{language}'"),
            language=language,
        )

    data = engine(raw)
    if data is None:
        return FrontMatter(body=body, language=language)
    if not isinstance(data, dict):
        return FrontMatter(
            body=text,
            metadata=FrontMatterError("Front matter must be a mapping"),
            language=language,
        )

    return FrontMatter(body=body, metadata=data, language=language)
