"""Final artifact generation.

Loads the rendered HTML into a browser page, applies stylesheets and
scripts, then exports the page as PDF bytes or serialized HTML. DOCX output
is built from the Markdown itself and never touches the browser.
"""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from markpdf.config import Config, OutputFormat
from markpdf.core.docx import build_docx
from markpdf.core.engine import BrowserEngine

logger = logging.getLogger(__name__)

HIGHLIGHT_JS_VERSION = "11.9.0"
HIGHLIGHT_JS_BASE_URL = f"https://cdnjs.cloudflare.com/ajax/libs/highlight.js/{HIGHLIGHT_JS_VERSION}"
NAVIGATION_TIMEOUT_MS = 5000

# Keyword arguments accepted by Playwright's Page.pdf()
PDF_OPTION_KEYS = frozenset(
    {
        "scale",
        "display_header_footer",
        "header_template",
        "footer_template",
        "print_background",
        "landscape",
        "page_ranges",
        "format",
        "width",
        "height",
        "prefer_css_page_size",
        "margin",
        "outline",
        "tagged",
    }
)


def is_http_url(value: str) -> bool:
    """Check whether a stylesheet or script reference is a remote URL."""
    return value.startswith(("http://", "https://"))


def filter_pdf_options(pdf_options: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the options Page.pdf() understands.

    Unknown keys are dropped with a warning instead of failing the export.
    """
    unknown = sorted(set(pdf_options) - PDF_OPTION_KEYS)
    if unknown:
        logger.warning(f"Ignoring unsupported pdf_options: {', '.join(unknown)}")
    return {key: value for key, value in pdf_options.items() if key in PDF_OPTION_KEYS}


def index_url(port: int, relative_path: str) -> str:
    """URL of the served document directory's index page."""
    pathname = PurePosixPath(relative_path.replace("\\", "/"), "index.html").as_posix()
    return f"http://localhost:{port}/{pathname.lstrip('/')}"


class OutputGenerator:
    """Produces PDF, HTML or DOCX output for one rendered document."""

    def __init__(self, engine: BrowserEngine | None = None) -> None:
        """Initialize generator.

        Args:
            engine: Browser engine used for PDF and HTML output
        """
        self._engine = engine

    @property
    def engine(self) -> BrowserEngine | None:
        return self._engine

    async def generate(
        self,
        html: str,
        relative_path: str,
        config: Config,
        markdown: str | None = None,
    ) -> bytes | str | None:
        """Generate the final artifact.

        Args:
            html: Full HTML document
            relative_path: Directory of the source relative to basedir
            config: Effective configuration
            markdown: Markdown body, required for DOCX output

        Returns:
            PDF bytes, HTML text or DOCX bytes. None in devtools mode, where
            the page stays open for inspection until the user closes it.
        """
        if config.output_format == OutputFormat.DOCX:
            return await asyncio.to_thread(build_docx, markdown or "", config)

        if self._engine is None:
            raise RuntimeError("OutputGenerator needs a BrowserEngine for PDF and HTML output")

        async with self._engine.page() as page:
            await self._setup_page(page, html, relative_path, config)
            await self._load_resources(page, config)
            await page.emulate_media(media=config.page_media_type)

            try:
                await page.wait_for_load_state("networkidle")
            except PlaywrightError as e:
                logger.debug(f"Resources did not settle: {e}")

            if config.devtools:
                await page.wait_for_event("close", timeout=0)
                return None

            if config.output_format == OutputFormat.HTML:
                return await page.content()

            return await page.pdf(**filter_pdf_options(config.pdf_options))

    async def _setup_page(self, page: Page, html: str, relative_path: str, config: Config) -> None:
        # Navigating first gives the page an origin on the static server, so
        # relative links in the document resolve against basedir.
        if config.port:
            try:
                await page.goto(
                    index_url(config.port, relative_path),
                    wait_until="domcontentloaded",
                    timeout=NAVIGATION_TIMEOUT_MS,
                )
            except PlaywrightError as e:
                logger.debug(f"Navigation to static server failed: {e}")

        await page.set_content(html)

    async def _load_resources(self, page: Page, config: Config) -> None:
        for stylesheet in config.stylesheet:
            if is_http_url(stylesheet):
                await page.add_style_tag(url=stylesheet)
            else:
                content = await asyncio.to_thread(
                    _read_text, stylesheet, config.stylesheet_encoding
                )
                await page.add_style_tag(content=content)

        if config.css:
            await page.add_style_tag(content=config.css)

        for script in config.script:
            if isinstance(script, Mapping):
                await page.add_script_tag(**script)
            elif is_http_url(script):
                await page.add_script_tag(url=script)
            else:
                await page.add_script_tag(path=script)

        if config.highlight_style and "<pre><code" in await page.content():
            await self._apply_highlighting(page, config.highlight_style)

    async def _apply_highlighting(self, page: Page, style: str) -> None:
        try:
            await page.add_style_tag(url=f"{HIGHLIGHT_JS_BASE_URL}/styles/{style}.min.css")
            await page.add_script_tag(url=f"{HIGHLIGHT_JS_BASE_URL}/highlight.min.js")
            await page.evaluate("() => hljs.highlightAll()")
        except PlaywrightError as e:
            logger.warning(f"Code highlighting unavailable: {e}")


def _read_text(path: str, encoding: str) -> str:
    with open(path, encoding=encoding) as f:
        return f.read()
