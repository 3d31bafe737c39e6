"""CLI interface for markpdf.

Command-line tool for converting Markdown files to PDF, HTML or DOCX.
"""

import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

import click
from playwright.async_api import Error as PlaywrightError

from markpdf import __version__
from markpdf.config import (
    Config,
    OutputFormat,
    cli_layer,
    discover_config_file,
    load_config_file,
    merge_configs,
    validate_config,
)
from markpdf.core.converter import ConversionRequest, Converter
from markpdf.core.engine import BrowserEngine
from markpdf.errors import MarkpdfError
from markpdf.live import DocumentWatcher
from markpdf.server import StaticServer

logger = logging.getLogger(__name__)

# Messages that already name the file and read as a full sentence.
STANDALONE_ERROR_PREFIXES = (
    "File not found:",
    "Permission denied:",
    "Failed to read",
    "Failed to create",
)


def format_error_message(error: BaseException, file: str | None = None) -> str:
    """Format a conversion failure for the terminal.

    Args:
        error: Exception raised by the conversion
        file: Source file label, if any

    Returns:
        Human-readable message
    """
    message = str(error) or error.__class__.__name__
    if file is None or message.startswith(STANDALONE_ERROR_PREFIXES):
        return message
    return f'Error processing "{file}": {message}'


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _read_stdin() -> str | None:
    stdin = click.get_text_stream("stdin")
    if stdin.isatty():
        return None
    content = stdin.read()
    return content if content.strip() else None


async def _convert_one(
    converter: Converter,
    request: ConversionRequest,
    layers: list[dict[str, Any]],
    label: str | None,
) -> bool:
    try:
        output = await converter.convert(request, None, *layers)
    except (MarkpdfError, PlaywrightError, OSError) as e:
        logger.debug("Conversion failed", exc_info=True)
        click.echo(click.style(format_error_message(e, label), fg="red"), err=True)
        return False

    if output.filename and output.filename != "stdout":
        click.echo(f"Converted {label} -> {output.filename}", err=True)
    return True


async def run_batch(
    files: list[Path],
    content: str | None,
    base: Config,
    layers: list[dict[str, Any]],
    *,
    watch: bool = False,
) -> int:
    """Convert a batch of files (or stdin content) concurrently.

    All conversions share one static server and one browser.

    Args:
        files: Markdown files to convert
        content: Markdown read from stdin, used when files is empty
        base: Merged CLI and config-file settings
        layers: Config layers applied over each document's front matter
        watch: Keep running and re-convert files when they change

    Returns:
        Process exit code
    """
    engine = BrowserEngine(base.launch_options, devtools=base.devtools)
    converter = Converter(engine=engine)

    async with AsyncExitStack() as stack:
        server = await stack.enter_async_context(StaticServer(base.basedir, base.port))
        if base.output_format != OutputFormat.DOCX:
            await stack.enter_async_context(engine)

        layers = [*layers, {"port": server.port}]

        if not files:
            ok = await _convert_one(converter, ConversionRequest(content=content), layers, None)
            return 0 if ok else 1

        results = await asyncio.gather(
            *(
                _convert_one(converter, ConversionRequest(path=file), layers, str(file))
                for file in files
            )
        )

        if watch:
            async def reconvert(path: Path) -> None:
                await _convert_one(converter, ConversionRequest(path=path), layers, str(path))

            click.echo("Watching for changes. Press Ctrl+C to stop.", err=True)
            await DocumentWatcher(files, reconvert).run()

        return 0 if all(results) else 1


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("files", nargs=-1, type=click.Path(path_type=Path, dir_okay=False))
@click.option("--watch", "-w", is_flag=True, help="Watch the files and re-convert on change")
@click.option("--as-html", is_flag=True, help="Output HTML instead of PDF")
@click.option("--as-docx", is_flag=True, help="Output DOCX instead of PDF")
@click.option(
    "--basedir",
    type=click.Path(exists=True, path_type=Path, file_okay=False),
    default=None,
    help="Base directory served to the browser (default: current directory)",
)
@click.option(
    "--stylesheet",
    multiple=True,
    help="Stylesheet path or URL (repeatable; replaces the default stylesheet)",
)
@click.option("--css", default=None, help="Additional CSS rules")
@click.option("--document-title", default=None, help="HTML document title")
@click.option("--body-class", multiple=True, help="Class added to the body element (repeatable)")
@click.option(
    "--page-media-type",
    type=click.Choice(["screen", "print"]),
    default=None,
    help="Media type to emulate when rendering",
)
@click.option("--highlight-style", default=None, help="highlight.js style for code blocks")
@click.option("--markdown-options", default=None, help="Markdown options as JSON")
@click.option("--pdf-options", default=None, help="PDF options as JSON")
@click.option("--launch-options", default=None, help="Browser launch options as JSON")
@click.option("--port", "-p", type=int, default=None, help="Port for the static server")
@click.option("--md-file-encoding", default=None, help="Encoding of the Markdown files")
@click.option("--stylesheet-encoding", default=None, help="Encoding of local stylesheets")
@click.option(
    "--config-file",
    "-c",
    type=click.Path(exists=True, path_type=Path, dir_okay=False),
    default=None,
    help="Path to configuration file (default: auto-discover markpdf.toml)",
)
@click.option("--devtools", is_flag=True, help="Open the browser with devtools instead of writing output")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, "--version", "-V")
@click.pass_context
def cli(
    ctx: click.Context,
    files: tuple[Path, ...],
    watch: bool,
    config_file: Path | None,
    verbose: bool,
    debug: bool,
    **_flags: Any,
) -> None:
    """Convert Markdown files to PDF, HTML or DOCX.

    Reads Markdown from stdin when no FILES are given.
    """
    _configure_logging(verbose, debug)

    try:
        config_path = config_file or discover_config_file()
        file_layer = load_config_file(config_path) if config_path else {}
        flag_layer = cli_layer(ctx.params)
        base = merge_configs(flag_layer, file_layer)
        validate_config(base)
    except MarkpdfError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if config_path:
        logger.info(f"Using config file {config_path}")

    content = None if files else _read_stdin()
    if not files and content is None:
        click.echo(ctx.get_help())
        return

    try:
        exit_code = asyncio.run(
            run_batch(list(files), content, base, [flag_layer, file_layer], watch=watch)
        )
    except KeyboardInterrupt:
        exit_code = 0

    if exit_code:
        sys.exit(exit_code)
