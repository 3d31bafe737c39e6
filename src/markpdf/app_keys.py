"""Application keys for type-safe app configuration access."""

from pathlib import Path

from aiohttp import web

basedir_key = web.AppKey("basedir", Path)
image_dir_key = web.AppKey("image_dir", Path)
