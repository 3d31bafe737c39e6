"""Shared test fixtures."""

import base64
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from markpdf.config import Config
from markpdf.core.cache import DiagramImageStore
from markpdf.core.diagrams import DiagramBlock, RenderedDiagramArtifact
from markpdf.errors import RenderTimeout

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class FakeRenderer:
    """Diagram renderer that writes a fixed PNG instead of driving a browser."""

    def __init__(self, store: DiagramImageStore, fail_on: set[int] | None = None) -> None:
        self.store = store
        self.fail_on = fail_on or set()
        self.rendered: list[DiagramBlock] = []

    async def render(self, block: DiagramBlock) -> RenderedDiagramArtifact:
        if block.index in self.fail_on:
            raise RenderTimeout("Diagram did not render within timeout period")

        self.rendered.append(block)
        path = self.store.path_for(block.content_hash, block.index)
        path.write_bytes(PNG_BYTES)
        return RenderedDiagramArtifact(path=path, width=1, height=1)


class FakeEngine:
    """BrowserEngine stand-in counting open()/close() calls."""

    def __init__(self, page: Any = None) -> None:
        self.opens = 0
        self.closes = 0
        self._page = page or MagicMock()

    @property
    def is_open(self) -> bool:
        return self.opens > self.closes

    async def open(self) -> "FakeEngine":
        self.opens += 1
        return self

    async def close(self) -> None:
        self.closes += 1

    async def __aenter__(self) -> "FakeEngine":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Any]:
        yield self._page


class FakeOutputGenerator:
    """Output generator returning fixed content and recording its input."""

    def __init__(self, content: bytes | str | None = b"%PDF-1.7") -> None:
        self.content = content
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        html: str,
        relative_path: str,
        config: Config,
        markdown: str | None = None,
    ) -> bytes | str | None:
        self.calls.append(
            {"html": html, "relative_path": relative_path, "config": config, "markdown": markdown}
        )
        return self.content


@pytest.fixture
def image_store(tmp_path: Path) -> DiagramImageStore:
    """Image store in a per-test temp directory."""
    return DiagramImageStore(tmp_path / "diagram-images")


@pytest.fixture
def fake_renderer(image_store: DiagramImageStore) -> FakeRenderer:
    return FakeRenderer(image_store)


@pytest.fixture
def mock_page() -> MagicMock:
    """Playwright page mock with async methods."""
    page = MagicMock()
    page.set_content = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.evaluate = AsyncMock(return_value={"width": 120.2, "height": 80.0})
    page.set_viewport_size = AsyncMock()
    page.query_selector = AsyncMock()
    page.content = AsyncMock(return_value="<html></html>")
    page.pdf = AsyncMock(return_value=b"%PDF-1.7")
    page.goto = AsyncMock()
    page.add_style_tag = AsyncMock()
    page.add_script_tag = AsyncMock()
    page.emulate_media = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_event = AsyncMock()
    return page


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Config rooted at a per-test base directory."""
    basedir = tmp_path / "docs"
    basedir.mkdir(exist_ok=True)
    return Config(basedir=basedir)
