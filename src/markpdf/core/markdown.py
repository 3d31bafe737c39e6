"""Markdown to HTML rendering.

Thin layer over mistune. Fenced code blocks are emitted with highlight.js
classes so the browser can colour them; a custom highlighter can replace
that. Fenced blocks can also be claimed by an extension keyed on the info
tag, which renders them to arbitrary HTML.
"""

import html
import logging
from collections.abc import Callable, Mapping
from typing import Any

import mistune
from mistune.util import escape

logger = logging.getLogger(__name__)

DEFAULT_PLUGINS = ("table", "strikethrough", "url", "task_lists")

# (code, language) -> HTML, or None to fall back to the default output
Highlighter = Callable[[str, str], str | None]
ExtensionHandler = Callable[[str], str]


class MarkpdfHTMLRenderer(mistune.HTMLRenderer):
    """HTML renderer with extension and highlighter hooks for code blocks."""

    def __init__(
        self,
        extensions: Mapping[str, ExtensionHandler],
        highlighter: Highlighter | None = None,
        *,
        escape: bool = False,
    ) -> None:
        super().__init__(escape=escape)
        self._extensions = extensions
        self._highlighter = highlighter

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = info.split(None, 1)[0] if info and info.strip() else ""

        handler = self._extensions.get(lang)
        if handler is not None:
            return handler(code)

        if self._highlighter is not None:
            highlighted = self._highlighter(code, lang)
            if highlighted is not None:
                return highlighted

        css_class = f"hljs language-{escape(lang)}" if lang else "hljs"
        return f'<pre><code class="{css_class}">{escape(code)}</code></pre>\n'


class MarkdownRenderer:
    """Markdown renderer with a closed extension interface.

    Options (from ``markdown_options``):
        escape: Escape raw HTML in the source (default False, so inline
            diagram figures survive)
        hard_wrap: Turn single newlines into <br>
        plugins: mistune plugin names (default: table, strikethrough, url,
            task_lists)
    """

    def __init__(self, options: Mapping[str, Any] | None = None) -> None:
        options = dict(options or {})
        self._escape = bool(options.get("escape", False))
        self._hard_wrap = bool(options.get("hard_wrap", False))
        self._plugins = list(options.get("plugins", DEFAULT_PLUGINS))
        self._extensions: dict[str, ExtensionHandler] = {}
        self._highlighter: Highlighter | None = None

    def register_extension(self, tag: str, handler: ExtensionHandler) -> None:
        """Render fenced blocks tagged ``tag`` with ``handler``.

        Args:
            tag: Info string language tag (exact match)
            handler: Callable receiving the block body and returning HTML
        """
        self._extensions[tag] = handler

    def set_highlighter(self, highlighter: Highlighter | None) -> None:
        """Replace the default highlight.js markup for code blocks."""
        self._highlighter = highlighter

    def to_html(self, markdown: str) -> str:
        """Render Markdown to an HTML fragment."""
        renderer = MarkpdfHTMLRenderer(
            self._extensions,
            self._highlighter,
            escape=self._escape,
        )
        md = mistune.create_markdown(
            escape=self._escape,
            hard_wrap=self._hard_wrap,
            renderer=renderer,
            plugins=self._plugins,
        )
        logger.debug(f"Rendering {len(markdown)} characters of markdown")
        return md(markdown)


def get_html(markdown: str, config: Any, renderer: MarkdownRenderer | None = None) -> str:
    """Render Markdown into a complete HTML document.

    Args:
        markdown: Markdown text (diagrams already inlined)
        config: Effective Config (document_title, body_class, markdown_options)
        renderer: Renderer to use (default: one built from markdown_options)

    Returns:
        HTML document string
    """
    renderer = renderer or MarkdownRenderer(config.markdown_options)
    title = html.escape(config.document_title or "")
    body_class = html.escape(" ".join(config.body_class), quote=True)
    body = renderer.to_html(markdown)
    return f"""<!DOCTYPE html>
<html>
  <head><title>{title}</title><meta charset="utf-8"></head>
  <body class="{body_class}">
{body}
  </body>
</html>
"""
