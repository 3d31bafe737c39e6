"""Conversion pipeline.

One conversion runs these steps in order:

    validate input -> read source -> parse front matter -> merge config
    -> detect diagrams -> [render diagrams] -> render markup
    -> generate output -> write output -> clean up

Input, configuration and output errors abort the conversion. Front matter
and per-diagram failures are logged and the conversion carries on.
"""

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import yaml
from playwright.async_api import Error as PlaywrightError

from markpdf.config import Config, OutputFormat, merge_configs, validate_config
from markpdf.core.cache import DiagramImageStore
from markpdf.core.diagrams import (
    ChartProcessResult,
    ChartRenderer,
    DiagramRenderer,
    cleanup_images,
    has_diagram_blocks,
    process_charts,
)
from markpdf.core.engine import BrowserEngine
from markpdf.core.frontmatter import FrontMatter, FrontMatterError, parse_front_matter
from markpdf.core.markdown import get_html
from markpdf.core.output import OutputGenerator
from markpdf.errors import OutputGenerationError, ValidationError

logger = logging.getLogger(__name__)

RendererFactory = Callable[[BrowserEngine, DiagramImageStore, float], ChartRenderer]


class ArtifactGenerator(Protocol):
    """Anything that turns a rendered HTML document into the final artifact."""

    async def generate(
        self,
        html: str,
        relative_path: str,
        config: Config,
        markdown: str | None = None,
    ) -> bytes | str | None: ...


@dataclass(frozen=True)
class ConversionRequest:
    """One document to convert.

    Exactly one of path and content must be set. output_format and
    destination override the effective configuration when given.
    """

    path: Path | None = None
    content: str | None = None
    output_format: OutputFormat | None = None
    destination: str | None = None


@dataclass(frozen=True)
class ConversionOutput:
    """Final artifact of a conversion.

    filename is "stdout", a file path, or empty when nothing was written.
    """

    filename: str | None
    content: bytes | str


def output_path_for(source: Path, output_format: OutputFormat) -> Path:
    """Derive the output file path by swapping the source extension."""
    return source.with_suffix(f".{output_format.value}")


def _read_source(path: Path, encoding: str) -> str:
    return path.read_bytes().decode(encoding)


def _write_output(filename: str, content: bytes | str) -> None:
    if isinstance(content, bytes):
        Path(filename).write_bytes(content)
    else:
        Path(filename).write_text(content, encoding="utf-8")


def _write_stdout(content: bytes | str) -> None:
    if isinstance(content, bytes):
        sys.stdout.buffer.write(content)
        sys.stdout.buffer.flush()
    else:
        sys.stdout.write(content)
        sys.stdout.flush()


def _default_renderer_factory(
    engine: BrowserEngine,
    store: DiagramImageStore,
    timeout: float,
) -> ChartRenderer:
    return DiagramRenderer(engine, store, timeout=timeout)


class Converter:
    """Runs conversions against a shared browser engine.

    When no engine is given, each conversion that needs a browser launches
    its own and shuts it down before returning.
    """

    def __init__(
        self,
        engine: BrowserEngine | None = None,
        output_generator: ArtifactGenerator | None = None,
        renderer_factory: RendererFactory | None = None,
        store: DiagramImageStore | None = None,
    ) -> None:
        """Initialize converter.

        Args:
            engine: Browser engine shared across conversions
            output_generator: Artifact generator (default: OutputGenerator on the engine)
            renderer_factory: Builds the diagram renderer for a conversion
            store: Diagram image store (default: shared temp directory)
        """
        self._engine = engine
        self._output_generator = output_generator
        self._renderer_factory = renderer_factory or _default_renderer_factory
        self._store = store or DiagramImageStore()

    async def convert(
        self,
        request: ConversionRequest,
        config: Config | None = None,
        *layers: Mapping[str, Any],
    ) -> ConversionOutput:
        """Convert one document.

        Args:
            request: Source and per-request overrides
            config: Base configuration, overridden by front matter
            layers: Config layers that override front matter (CLI flags,
                then config file)

        Returns:
            ConversionOutput with the artifact content

        Raises:
            ValidationError: If the request is malformed or the source unreadable
            ConfigurationError: If the merged configuration is invalid
            OutputGenerationError: If no artifact was produced
        """
        self._validate_request(request)

        base = merge_configs(config, *layers)
        text = await self._read_source(request, base.md_file_encoding)
        front_matter = self._parse_front_matter(text, base.front_matter_options)

        effective = self._merge_config(request, config, front_matter, layers)
        markdown = front_matter.body

        async with AsyncExitStack() as stack:
            engine: BrowserEngine | None = None

            async def acquire_engine() -> BrowserEngine:
                nonlocal engine
                if engine is None:
                    engine = self._engine or BrowserEngine(
                        effective.launch_options, devtools=effective.devtools
                    )
                    await engine.open()
                    stack.push_async_callback(engine.close)
                return engine

            charts = ChartProcessResult(processed_markdown=markdown)
            if has_diagram_blocks(markdown):
                charts = await self._render_diagrams(markdown, request, effective, acquire_engine)
            stack.callback(self._cleanup, charts)

            html = get_html(charts.processed_markdown, effective)
            relative_path = self._relative_path(request, effective)

            generator = self._output_generator
            if generator is None:
                needs_browser = effective.output_format != OutputFormat.DOCX
                generator = OutputGenerator(await acquire_engine() if needs_browser else None)

            content = await generator.generate(
                html, relative_path, effective, charts.processed_markdown
            )

            if content is None:
                if effective.devtools:
                    raise OutputGenerationError("No file is generated with --devtools.")
                raise OutputGenerationError(
                    f"Failed to create {effective.output_format.value.upper()}."
                )

            output = ConversionOutput(filename=effective.dest, content=content)
            await self._write(output)

        return output

    def _validate_request(self, request: ConversionRequest) -> None:
        if (request.path is None) == (request.content is None):
            raise ValidationError("Input must have exactly one of path or content")

    async def _read_source(self, request: ConversionRequest, encoding: str) -> str:
        if request.content is not None:
            return request.content

        path = request.path
        try:
            return await asyncio.to_thread(_read_source, path, encoding)
        except FileNotFoundError as e:
            raise ValidationError(
                f'File not found: "{path}". '
                "Please check that the file exists and the path is correct."
            ) from e
        except PermissionError as e:
            raise ValidationError(
                f'Permission denied: "{path}". '
                "Please check that you have read permission for this file."
            ) from e
        except (OSError, UnicodeDecodeError, LookupError) as e:
            raise ValidationError(f'Failed to read markdown file "{path}": {e}') from e

    def _parse_front_matter(self, text: str, options: Mapping[str, Any]) -> FrontMatter:
        try:
            front_matter = parse_front_matter(text, options)
        except (yaml.YAMLError, ValueError) as e:
            logger.warning(f"Failed to parse front matter, continuing without it: {e}")
            return FrontMatter(body=text)

        if isinstance(front_matter.metadata, FrontMatterError):
            logger.warning(
                f"Front matter was ignored because it could not be parsed: "
                f"{front_matter.metadata.message}"
            )
            return FrontMatter(body=text)

        return front_matter

    def _merge_config(
        self,
        request: ConversionRequest,
        config: Config | None,
        front_matter: FrontMatter,
        layers: tuple[Mapping[str, Any], ...],
    ) -> Config:
        metadata = front_matter.metadata if isinstance(front_matter.metadata, dict) else {}
        effective = merge_configs(config, metadata, *layers)
        effective = effective.with_overrides(
            output_format=request.output_format,
            dest=request.destination,
        )
        validate_config(effective)

        if effective.dest is None:
            if request.path is not None:
                dest = str(output_path_for(request.path, effective.output_format))
            else:
                dest = "stdout"
            effective = effective.with_overrides(dest=dest)

        return effective

    async def _render_diagrams(
        self,
        markdown: str,
        request: ConversionRequest,
        config: Config,
        acquire_engine: Callable[[], Awaitable[BrowserEngine]],
    ) -> ChartProcessResult:
        markdown_dir = request.path.parent if request.path is not None else None
        try:
            engine = await acquire_engine()
            renderer = self._renderer_factory(engine, self._store, config.diagram_timeout)
            result = await process_charts(
                markdown,
                engine,
                config.basedir,
                markdown_dir,
                config.port,
                renderer=renderer,
                store=self._store,
                timeout=config.diagram_timeout,
            )
        except (PlaywrightError, OSError) as e:
            logger.warning(f"Failed to process diagrams, continuing without them: {e}")
            return ChartProcessResult(processed_markdown=markdown)

        if result.warnings:
            logger.warning("Some diagrams could not be rendered:")
            for warning in result.warnings:
                logger.warning(f"  - {warning}")

        return result

    def _relative_path(self, request: ConversionRequest, config: Config) -> str:
        if request.path is None:
            return "."
        return os.path.relpath(request.path.resolve().parent, Path(config.basedir).resolve())

    def _cleanup(self, charts: ChartProcessResult) -> None:
        if not charts.image_files:
            return
        try:
            cleanup_images(charts.image_files, self._store)
        except Exception as e:
            logger.warning(f"Failed to clean up some diagram images: {e}")

    async def _write(self, output: ConversionOutput) -> None:
        if not output.filename:
            return
        if output.filename == "stdout":
            await asyncio.to_thread(_write_stdout, output.content)
        else:
            await asyncio.to_thread(_write_output, output.filename, output.content)
