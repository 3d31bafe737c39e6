"""File watching for watch mode.

Monitors the source Markdown files of a batch and re-runs the conversion
of each file that changes.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

from watchfiles import Change, awatch

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Path], Awaitable[None]]


class DocumentWatcher:
    """Watches a fixed set of documents and reports changed ones."""

    def __init__(self, files: Iterable[Path], on_change: ChangeHandler) -> None:
        """Initialize the watcher.

        Args:
            files: Documents to watch
            on_change: Coroutine called with the resolved path of each changed document
        """
        self._files = {Path(f).resolve() for f in files}
        self._on_change = on_change
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def files(self) -> frozenset[Path]:
        return frozenset(self._files)

    async def start(self) -> None:
        """Start the file watcher in the background."""
        if self._watch_task is not None:
            return
        self._watch_task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the file watcher."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Watch until cancelled or stop_event is set."""
        if not self._files:
            return

        logger.info(f"Watching {len(self._files)} file(s) for changes")
        async for changes in awatch(*self._files, stop_event=stop_event):
            for path in self.changed_documents(changes):
                await self._on_change(path)

    def changed_documents(self, changes: Iterable[tuple[Change, str]]) -> list[Path]:
        """Filter a watchfiles change batch down to watched, existing documents.

        Args:
            changes: (change type, path) pairs from watchfiles

        Returns:
            Changed documents in first-seen order, without duplicates
        """
        changed: list[Path] = []
        for change_type, path_str in changes:
            if change_type == Change.deleted:
                continue

            path = Path(path_str).resolve()
            if path in self._files and path not in changed:
                changed.append(path)
        return changed
