"""aiohttp static server for the browser.

The rendering engine loads documents from this server so that relative
links, images and stylesheets in the Markdown resolve against the base
directory. Rendered diagram images are served from the temp directory
under a reserved prefix.
"""

import logging
from pathlib import Path

from aiohttp import web

from markpdf.app_keys import basedir_key, image_dir_key
from markpdf.core.cache import default_image_dir

logger = logging.getLogger(__name__)

TEMP_URL_PREFIX = "/__markpdf_temp__"
DEFAULT_HOST = "127.0.0.1"


async def serve_temp_image(request: web.Request) -> web.FileResponse:
    """Serve a rendered diagram image from the temp directory."""
    filename = request.match_info["filename"]
    image_dir = request.app[image_dir_key]
    image_path = image_dir / filename

    if Path(filename).name != filename or not image_path.is_file():
        raise web.HTTPNotFound(text="Image not found")

    return web.FileResponse(image_path)


def create_app(basedir: Path, image_dir: Path | None = None) -> web.Application:
    """Create aiohttp application.

    Args:
        basedir: Directory served at the root
        image_dir: Directory holding rendered diagram images

    Returns:
        Configured aiohttp application
    """
    app = web.Application()
    app[basedir_key] = Path(basedir)
    app[image_dir_key] = Path(image_dir) if image_dir else default_image_dir()

    # Temp images must be registered before the catch-all static route
    app.router.add_get(f"{TEMP_URL_PREFIX}/{{filename}}", serve_temp_image)
    app.router.add_static("/", Path(basedir), show_index=False, follow_symlinks=False)

    return app


class StaticServer:
    """Runs create_app() on a local port for the lifetime of a batch."""

    def __init__(
        self,
        basedir: Path,
        port: int | None = None,
        image_dir: Path | None = None,
        host: str = DEFAULT_HOST,
    ) -> None:
        """Initialize server.

        Args:
            basedir: Directory served at the root
            port: Port to bind (None or 0 picks a free port)
            image_dir: Directory holding rendered diagram images
            host: Interface to bind
        """
        self._app = create_app(basedir, image_dir)
        self._host = host
        self._requested_port = port or 0
        self._runner: web.AppRunner | None = None
        self._port: int | None = None

    @property
    def port(self) -> int | None:
        """Bound port, available after start()."""
        return self._port

    @property
    def app(self) -> web.Application:
        return self._app

    async def start(self) -> int:
        """Start serving and return the bound port."""
        runner = web.AppRunner(self._app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._requested_port)
        await site.start()

        self._runner = runner
        self._port = runner.addresses[0][1]
        logger.debug(f"Serving {self._app[basedir_key]} on http://{self._host}:{self._port}")
        return self._port

    async def stop(self) -> None:
        """Stop serving."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._port = None

    async def __aenter__(self) -> "StaticServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
