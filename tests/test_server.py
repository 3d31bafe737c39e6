"""Tests for the static asset server."""

from pathlib import Path
from typing import Any

import aiohttp
import pytest
from markpdf.app_keys import basedir_key, image_dir_key
from markpdf.server import TEMP_URL_PREFIX, StaticServer, create_app


@pytest.fixture
def basedir(tmp_path: Path) -> Path:
    """Base directory with one document and one image."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "readme.md").write_text("# Readme")
    (docs / "img").mkdir()
    (docs / "img" / "logo.png").write_bytes(b"\x89PNG")
    return docs


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    images = tmp_path / "images"
    images.mkdir()
    (images / "diagram-abc-0.png").write_bytes(b"\x89PNG diagram")
    return images


class TestCreateApp:
    """Tests for create_app()."""

    def test__app_keys__configured(self, basedir: Path, image_dir: Path) -> None:
        app = create_app(basedir, image_dir)

        assert app[basedir_key] == basedir
        assert app[image_dir_key] == image_dir

    @pytest.mark.asyncio
    async def test__basedir_file__served(
        self,
        aiohttp_client: Any,
        basedir: Path,
        image_dir: Path,
    ) -> None:
        client = await aiohttp_client(create_app(basedir, image_dir))

        response = await client.get("/img/logo.png")

        assert response.status == 200
        assert await response.read() == b"\x89PNG"

    @pytest.mark.asyncio
    async def test__temp_image__served(
        self,
        aiohttp_client: Any,
        basedir: Path,
        image_dir: Path,
    ) -> None:
        client = await aiohttp_client(create_app(basedir, image_dir))

        response = await client.get(f"{TEMP_URL_PREFIX}/diagram-abc-0.png")

        assert response.status == 200
        assert await response.read() == b"\x89PNG diagram"

    @pytest.mark.asyncio
    async def test__missing_temp_image__404(
        self,
        aiohttp_client: Any,
        basedir: Path,
        image_dir: Path,
    ) -> None:
        client = await aiohttp_client(create_app(basedir, image_dir))

        response = await client.get(f"{TEMP_URL_PREFIX}/nope.png")

        assert response.status == 404
        assert await response.text() == "Image not found"

    @pytest.mark.asyncio
    async def test__missing_file__404(
        self,
        aiohttp_client: Any,
        basedir: Path,
        image_dir: Path,
    ) -> None:
        client = await aiohttp_client(create_app(basedir, image_dir))

        response = await client.get("/missing/index.html")

        assert response.status == 404


class TestStaticServer:
    """Tests for StaticServer."""

    @pytest.mark.asyncio
    async def test__start__binds_free_port(self, basedir: Path, image_dir: Path) -> None:
        server = StaticServer(basedir, image_dir=image_dir)

        port = await server.start()
        try:
            assert port > 0
            assert server.port == port
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{port}/readme.md") as response:
                    assert response.status == 200
                    assert await response.text() == "# Readme"
        finally:
            await server.stop()

        assert server.port is None

    @pytest.mark.asyncio
    async def test__context_manager__stops_server(self, basedir: Path) -> None:
        async with StaticServer(basedir) as server:
            assert server.port is not None

        assert server.port is None
