"""Configuration management for markpdf.

The effective configuration of a conversion is built from layers, lowest
precedence first:

    defaults < front matter < CLI flags < config file

Layers are plain mappings using the Config field names. Nested option
tables (pdf_options, launch_options, ...) merge key by key rather than
replacing each other. Config files are TOML (auto-discovered as
markpdf.toml) or JSON.
"""

import copy
import json
import logging
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from markpdf.assets import get_markdown_css_path
from markpdf.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "markpdf.toml"

ARRAY_OPTIONS = ("stylesheet", "body_class", "script")

# Flags whose value is a JSON document rather than a plain string.
JSON_FLAGS = frozenset({"markdown_options", "pdf_options", "launch_options"})

CLI_FLAGS = frozenset(
    {
        "basedir",
        "dest",
        "stylesheet",
        "css",
        "document_title",
        "body_class",
        "page_media_type",
        "highlight_style",
        "markdown_options",
        "pdf_options",
        "launch_options",
        "port",
        "md_file_encoding",
        "stylesheet_encoding",
        "as_html",
        "as_docx",
        "devtools",
        "diagram_timeout",
    }
)


class OutputFormat(StrEnum):
    """Final artifact type."""

    PDF = "pdf"
    HTML = "html"
    DOCX = "docx"


def _default_pdf_options() -> dict[str, Any]:
    return {
        "print_background": True,
        "format": "A4",
        "margin": {
            "top": "30mm",
            "right": "40mm",
            "bottom": "30mm",
            "left": "20mm",
        },
    }


def _has_template(pdf_options: Mapping[str, Any]) -> bool:
    return bool(pdf_options.get("header_template") or pdf_options.get("footer_template"))


@dataclass
class Config:
    """Effective conversion configuration."""

    basedir: Path = field(default_factory=Path.cwd)
    dest: str | None = None
    stylesheet: list[str] = field(default_factory=lambda: [str(get_markdown_css_path())])
    script: list[str | dict[str, str]] = field(default_factory=list)
    css: str = ""
    document_title: str = ""
    body_class: list[str] = field(default_factory=list)
    page_media_type: str = "screen"
    highlight_style: str = "github"
    markdown_options: dict[str, Any] = field(default_factory=dict)
    pdf_options: dict[str, Any] = field(default_factory=_default_pdf_options)
    launch_options: dict[str, Any] = field(default_factory=dict)
    front_matter_options: dict[str, Any] = field(default_factory=dict)
    md_file_encoding: str = "utf-8"
    stylesheet_encoding: str = "utf-8"
    output_format: OutputFormat = OutputFormat.PDF
    devtools: bool = False
    port: int | None = None
    diagram_timeout: float = 30.0

    def to_dict(self) -> dict[str, Any]:
        """Return a deep copy of this config as a layer mapping.

        A display_header_footer that only holds its derived default is left
        out, so templates added by a later layer can still turn it on.
        """
        data = {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}
        pdf_options = data["pdf_options"]
        if pdf_options.get("display_header_footer") == _has_template(pdf_options):
            pdf_options.pop("display_header_footer")
        return data

    def with_overrides(self, **overrides: Any) -> "Config":
        """Create a new Config with non-None overrides applied.

        The original Config is not modified.
        """
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_CONFIG_FIELDS = frozenset(f.name for f in fields(Config))


def get_margin_object(margin: str) -> dict[str, str] | None:
    """Expand a CSS margin shorthand into four named sides.

    Args:
        margin: One to four space-separated lengths, e.g. "10mm 20mm"

    Returns:
        Dict with top/right/bottom/left, or None for an empty string

    Raises:
        ConfigurationError: If more than four values are given
    """
    if not isinstance(margin, str):
        raise ConfigurationError("margin needs to be a string")

    tokens = margin.split()
    if len(tokens) > 4:
        raise ConfigurationError(f'invalid margin input "{margin}": can have max 4 values')
    if not tokens:
        return None

    top, right, bottom, left = (tokens + [""] * 4)[:4]
    right = right or top
    bottom = bottom or top
    left = left or right
    return {"top": top, "right": right, "bottom": bottom, "left": left}


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _layer_to_dict(layer: Mapping[str, Any] | Config) -> dict[str, Any]:
    if isinstance(layer, Config):
        return layer.to_dict()

    data = dict(layer)
    # as_html / as_docx are the flag spellings of output_format
    if data.pop("as_docx", False):
        data["output_format"] = OutputFormat.DOCX
    if data.pop("as_html", False):
        data["output_format"] = OutputFormat.HTML
    return data


def _as_list(value: object) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value] if value else []


def _normalize_pdf_options(pdf_options: dict[str, Any]) -> dict[str, Any]:
    options = dict(pdf_options)

    margin = options.get("margin")
    if isinstance(margin, str):
        expanded = get_margin_object(margin)
        if expanded is None:
            options.pop("margin")
        else:
            options["margin"] = expanded

    if options.get("display_header_footer") is None:
        options["display_header_footer"] = _has_template(options)

    return options


def _build_config(data: dict[str, Any]) -> Config:
    unknown = sorted(set(data) - _CONFIG_FIELDS)
    if unknown:
        logger.debug(f"Ignoring unknown config keys: {', '.join(unknown)}")

    values = {key: value for key, value in data.items() if key in _CONFIG_FIELDS}

    for option in ARRAY_OPTIONS:
        values[option] = _as_list(values.get(option))

    for option in ("markdown_options", "launch_options", "front_matter_options"):
        value = values.get(option) or {}
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"{option} must be a table")
        values[option] = dict(value)

    pdf_options = values.get("pdf_options") or {}
    if not isinstance(pdf_options, Mapping):
        raise ConfigurationError("pdf_options must be a table")
    values["pdf_options"] = _normalize_pdf_options(dict(pdf_options))

    basedir = values.get("basedir")
    values["basedir"] = Path(basedir) if basedir else basedir

    try:
        values["output_format"] = OutputFormat(values.get("output_format", OutputFormat.PDF))
    except ValueError as e:
        raise ConfigurationError(
            f"output_format must be one of: {', '.join(f.value for f in OutputFormat)}"
        ) from e

    port = values.get("port")
    if port is not None and not isinstance(port, int):
        try:
            values["port"] = int(port)
        except (TypeError, ValueError) as e:
            raise ConfigurationError("port must be an integer") from e

    try:
        values["diagram_timeout"] = float(values.get("diagram_timeout", 30.0))
    except (TypeError, ValueError) as e:
        raise ConfigurationError("diagram_timeout must be a number") from e

    return Config(**values)


def merge_configs(*layers: Mapping[str, Any] | Config | None) -> Config:
    """Merge configuration layers over the defaults.

    Later layers override earlier ones. Nested option tables merge key by
    key. Array options given as a bare value become one-element lists and
    a margin shorthand string is expanded.

    Args:
        layers: Partial config mappings (or full Configs), lowest precedence first

    Returns:
        Merged Config

    Raises:
        ConfigurationError: If a value is malformed
    """
    merged = Config().to_dict()
    for layer in layers:
        if layer is None:
            continue
        merged = _deep_merge(merged, _layer_to_dict(layer))
    return _build_config(merged)


def cli_layer(flags: Mapping[str, Any]) -> dict[str, Any]:
    """Turn CLI flags into a config layer.

    Flag names may be given as "--pdf-options" or "pdf_options". Flags that
    were not given (None, False or an empty tuple) are left out. JSON flags
    that fail to parse are dropped without failing the merge.

    Args:
        flags: Flag name to value mapping

    Returns:
        Partial config mapping
    """
    layer: dict[str, Any] = {}
    for flag, value in flags.items():
        key = flag.lstrip("-").replace("-", "_")
        if key not in CLI_FLAGS:
            continue
        if value is None or value is False or value == ():
            continue

        if key in JSON_FLAGS and isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring invalid JSON for --{key.replace('_', '-')}")
                continue

        layer[key] = list(value) if isinstance(value, tuple) else value
    return layer


def merge_cli_overrides(config: Config, flags: Mapping[str, Any]) -> Config:
    """Apply CLI flags on top of an existing config.

    Args:
        config: Base configuration
        flags: Flag name to value mapping

    Returns:
        New Config with the recognized flags applied
    """
    return merge_configs(config, cli_layer(flags))


def validate_config(config: Config) -> None:
    """Validate configuration.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    if not config.basedir:
        raise ConfigurationError("basedir is required")

    if config.port is not None and not 1 <= config.port <= 65535:
        raise ConfigurationError("port must be between 1 and 65535")

    if not isinstance(config.stylesheet, list):
        raise ConfigurationError("stylesheet must be a list")

    if not isinstance(config.body_class, list):
        raise ConfigurationError("body_class must be a list")


def discover_config_file(start: Path | None = None) -> Path | None:
    """Search for markpdf.toml in a directory and its parents.

    Args:
        start: Directory to start from (default: current directory)

    Returns:
        Path to config file or None if not found
    """
    current = start or Path.cwd()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a config layer from a TOML or JSON file.

    A relative basedir is resolved against the file's directory.

    Args:
        path: Path to a .toml or .json file

    Returns:
        Partial config mapping

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        if path.suffix == ".json":
            data = json.loads(path.read_text(encoding="utf-8"))
        else:
            with path.open("rb") as f:
                data = tomllib.load(f)
    except (OSError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a dictionary")

    basedir = data.get("basedir")
    if basedir is not None:
        if not isinstance(basedir, str):
            raise ConfigurationError("basedir must be a string")
        data["basedir"] = path.parent / basedir

    return data
