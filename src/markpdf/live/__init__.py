"""Watch mode for re-converting documents on change."""

from markpdf.live.watch import DocumentWatcher

__all__ = ["DocumentWatcher"]
