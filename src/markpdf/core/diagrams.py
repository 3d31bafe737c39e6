"""Diagram rendering for Markdown documents.

Finds fenced Mermaid blocks, renders each one to a PNG in its own browser
page and replaces the fenced block with an inline data URI image. A failing
diagram never aborts the document: it stays as source text and produces a
warning instead.
"""

import asyncio
import base64
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from markpdf.core.cache import DiagramImageStore, compute_diagram_hash
from markpdf.core.engine import BrowserEngine
from markpdf.errors import DiagramRenderError, RenderIncomplete, RenderTimeout

logger = logging.getLogger(__name__)

# Only the exact lowercase tag matches; ```Mermaid and ```MERMAID stay code.
DIAGRAM_BLOCK_RE = re.compile(r"```mermaid\s*\n([\s\S]*?)```")

MERMAID_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js"
RENDER_TIMEOUT_S = 30.0
CHART_PADDING_PX = 40
CONTAINER_CLASS = "diagram"
IMAGE_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class DiagramBlock:
    """A fenced diagram block found in a document."""

    source: str
    index: int
    content_hash: str
    span: tuple[int, int]
    fenced: str

    @property
    def is_empty(self) -> bool:
        return not self.source.strip()


@dataclass(frozen=True)
class RenderedDiagramArtifact:
    """A rendered diagram image on disk."""

    path: Path
    width: int
    height: int


@dataclass(frozen=True)
class ChartOutcome:
    """Result of handling one diagram block.

    Carries either a fragment (with the artifact it was built from) or a
    warning.
    """

    block: DiagramBlock
    fragment: str | None = None
    artifact: RenderedDiagramArtifact | None = None
    warning: str | None = None


@dataclass(frozen=True)
class ChartAccumulator:
    """Fold state for the per-diagram loop."""

    replacements: tuple[tuple[DiagramBlock, str], ...] = ()
    image_files: tuple[Path, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass
class ChartProcessResult:
    """Output of process_charts()."""

    processed_markdown: str
    image_files: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class ChartRenderer(Protocol):
    """Anything that can turn a diagram block into an image file."""

    async def render(self, block: DiagramBlock) -> RenderedDiagramArtifact: ...


def extract_diagram_blocks(markdown: str) -> list[DiagramBlock]:
    """Find all fenced diagram blocks in document order.

    Args:
        markdown: Markdown text

    Returns:
        List of DiagramBlock, indexed from 0
    """
    blocks: list[DiagramBlock] = []
    for index, match in enumerate(DIAGRAM_BLOCK_RE.finditer(markdown)):
        source = match.group(1)
        blocks.append(
            DiagramBlock(
                source=source,
                index=index,
                content_hash=compute_diagram_hash(source),
                span=match.span(),
                fenced=match.group(0),
            )
        )
    return blocks


def has_diagram_blocks(markdown: str) -> bool:
    """Check whether the document contains any diagram block."""
    return DIAGRAM_BLOCK_RE.search(markdown) is not None


def create_diagram_html(source: str) -> str:
    """Create a minimal page that renders one diagram with Mermaid.js.

    The source is inserted unescaped: Mermaid syntax relies on characters
    such as < and >, and the page runs in an isolated browser context.
    """
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <script src="{MERMAID_SCRIPT_URL}"></script>
  <style>
    body {{ margin: 0; padding: 20px; background: white; }}
    .mermaid {{ display: flex; justify-content: center; align-items: center; }}
  </style>
</head>
<body>
  <div class="mermaid">
{source}
  </div>
  <script>
    mermaid.initialize({{ startOnLoad: true, theme: 'default' }});
  </script>
</body>
</html>"""


class DiagramRenderer:
    """Renders diagram blocks to PNG files through a BrowserEngine."""

    _SVG_BOX_JS = """() => {
        const svg = document.querySelector('.mermaid svg');
        if (!svg) {
            return null;
        }
        const box = svg.getBoundingClientRect();
        return { width: box.width, height: box.height };
    }"""

    def __init__(
        self,
        engine: BrowserEngine,
        store: DiagramImageStore,
        *,
        timeout: float = RENDER_TIMEOUT_S,
    ) -> None:
        """Initialize renderer.

        Args:
            engine: Open browser engine
            store: Image store deciding where artifacts are written
            timeout: Seconds to wait for the diagram SVG to appear
        """
        self._engine = engine
        self._store = store
        self._timeout = timeout

    async def render(self, block: DiagramBlock) -> RenderedDiagramArtifact:
        """Render one diagram block.

        Args:
            block: Non-empty diagram block

        Returns:
            RenderedDiagramArtifact for the written PNG

        Raises:
            RenderTimeout: If the SVG did not appear within the timeout
            RenderIncomplete: If the rendered node is missing at capture time
            DiagramRenderError: For any other browser failure
        """
        image_path = self._store.path_for(block.content_hash, block.index)

        try:
            async with self._engine.page() as page:
                # Loading and drawing share one deadline.
                deadline = asyncio.get_running_loop().time() + self._timeout
                try:
                    await page.set_content(
                        create_diagram_html(block.source.strip()),
                        wait_until="networkidle",
                        timeout=self._remaining_ms(deadline),
                    )
                    await page.wait_for_function(
                        "() => document.querySelector('.mermaid svg') !== null",
                        timeout=self._remaining_ms(deadline),
                    )
                except PlaywrightTimeoutError as e:
                    raise RenderTimeout(
                        "Diagram did not render within timeout period"
                    ) from e

                box = await page.evaluate(self._SVG_BOX_JS)
                if not box:
                    raise RenderIncomplete("Could not find rendered diagram SVG element")

                width = math.ceil(box["width"])
                height = math.ceil(box["height"])
                await page.set_viewport_size(
                    {
                        "width": width + CHART_PADDING_PX,
                        "height": height + CHART_PADDING_PX,
                    }
                )

                element = await page.query_selector(".mermaid")
                if element is None:
                    raise RenderIncomplete("Diagram element not found for screenshot")

                await element.screenshot(path=str(image_path), type="png")
        except PlaywrightError as e:
            raise DiagramRenderError(str(e)) from e

        return RenderedDiagramArtifact(path=image_path, width=width, height=height)

    @staticmethod
    def _remaining_ms(deadline: float) -> float:
        # Playwright treats 0 as "no timeout", so never go below 1ms.
        return max(1.0, (deadline - asyncio.get_running_loop().time()) * 1000)


def build_image_fragment(image_bytes: bytes, position: int) -> str:
    """Build the inline HTML that replaces a fenced diagram block.

    Args:
        image_bytes: PNG bytes
        position: 1-based diagram position, used for alt text

    Returns:
        Figure element with a base64 data URI image
    """
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return (
        f'<figure class="{CONTAINER_CLASS}">'
        f'<img src="data:{IMAGE_MIME_TYPE};base64,{encoded}" alt="Diagram {position}" '
        f'style="max-width: 100%; height: auto;" />'
        f"</figure>"
    )


async def render_chart(renderer: ChartRenderer, block: DiagramBlock) -> ChartOutcome:
    """Render and embed one block, turning failures into a warning outcome."""
    if block.is_empty:
        return ChartOutcome(
            block=block,
            warning=f"Skipping empty diagram at index {block.index}",
        )

    try:
        artifact = await renderer.render(block)
        image_bytes = artifact.path.read_bytes()
    except (DiagramRenderError, OSError) as e:
        return ChartOutcome(
            block=block,
            warning=f"Failed to render diagram {block.index + 1}: {e}",
        )

    return ChartOutcome(
        block=block,
        fragment=build_image_fragment(image_bytes, block.index + 1),
        artifact=artifact,
    )


def fold_chart_outcome(acc: ChartAccumulator, outcome: ChartOutcome) -> ChartAccumulator:
    """Add one outcome to the accumulator.

    Args:
        acc: State after the previous blocks
        outcome: Outcome for the next block in document order

    Returns:
        New accumulator; the input is not modified
    """
    if outcome.fragment is None:
        warnings = acc.warnings + ((outcome.warning,) if outcome.warning else ())
        return ChartAccumulator(acc.replacements, acc.image_files, warnings)

    image_files = acc.image_files
    if outcome.artifact is not None:
        image_files = image_files + (outcome.artifact.path,)

    return ChartAccumulator(
        replacements=acc.replacements + ((outcome.block, outcome.fragment),),
        image_files=image_files,
        warnings=acc.warnings,
    )


def apply_replacements(
    markdown: str,
    replacements: tuple[tuple[DiagramBlock, str], ...],
) -> str:
    """Splice fragments over the original spans of their blocks.

    Args:
        markdown: Original document text
        replacements: (block, fragment) pairs

    Returns:
        Document with each replaced block swapped for its fragment
    """
    parts: list[str] = []
    cursor = 0
    for block, fragment in sorted(replacements, key=lambda r: r[0].span[0]):
        start, end = block.span
        parts.append(markdown[cursor:start])
        parts.append(fragment)
        cursor = end
    parts.append(markdown[cursor:])
    return "".join(parts)


async def process_charts(
    markdown: str,
    engine: BrowserEngine | None,
    base_dir: Path | str,
    markdown_dir: Path | str | None = None,
    server_port: int | None = None,
    *,
    renderer: ChartRenderer | None = None,
    store: DiagramImageStore | None = None,
    timeout: float = RENDER_TIMEOUT_S,
) -> ChartProcessResult:
    """Render all diagram blocks in a document and inline them as images.

    Images are embedded as data URIs, so base_dir, markdown_dir and
    server_port are not needed to resolve them; they are accepted so the
    call matches the rest of the pipeline.

    Args:
        markdown: Markdown text
        engine: Open BrowserEngine (may be None when renderer is given)
        base_dir: Base directory served to the browser
        markdown_dir: Directory of the source document, if any
        server_port: Port of the static asset server, if any
        renderer: Renderer to use instead of a DiagramRenderer on engine
        store: Image store (default: shared temp directory)
        timeout: Per-diagram render timeout in seconds

    Returns:
        ChartProcessResult with processed text, image paths and warnings
    """
    blocks = extract_diagram_blocks(markdown)
    if not blocks:
        return ChartProcessResult(processed_markdown=markdown)

    store = store or DiagramImageStore()
    store.ensure()

    if renderer is None:
        if engine is None:
            raise ValueError("process_charts() needs an engine or a renderer")
        renderer = DiagramRenderer(engine, store, timeout=timeout)

    logger.debug(f"Rendering {len(blocks)} diagram(s) into {store.image_dir}")

    acc = ChartAccumulator()
    for block in blocks:
        outcome = await render_chart(renderer, block)
        acc = fold_chart_outcome(acc, outcome)

    return ChartProcessResult(
        processed_markdown=apply_replacements(markdown, acc.replacements),
        image_files=list(acc.image_files),
        warnings=list(acc.warnings),
    )


def cleanup_images(image_files: list[Path], store: DiagramImageStore | None = None) -> None:
    """Delete rendered images after embedding. Never raises."""
    (store or DiagramImageStore()).cleanup(image_files)
