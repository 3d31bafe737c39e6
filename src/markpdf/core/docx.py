"""DOCX output built from the Markdown token stream.

mistune parses the document into an AST and python-docx writes one
paragraph, heading, list item or table per block token. Inline diagram
figures carry their PNG as a data URI, which is decoded and embedded as a
picture.
"""

import base64
import binascii
import io
import logging
import re
from pathlib import Path
from typing import Any

import mistune
from docx import Document
from docx.document import Document as DocumentObject
from docx.image.exceptions import UnrecognizedImageError
from docx.shared import Inches, Pt
from docx.text.paragraph import Paragraph

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"data:image/(?:png|jpeg|gif);base64,([A-Za-z0-9+/=]+)")
MAX_IMAGE_WIDTH = Inches(6)
CODE_FONT = "Courier New"
TOKEN_PLUGINS = ("table", "strikethrough", "url", "task_lists")

Token = dict[str, Any]


def parse_tokens(markdown: str) -> list[Token]:
    """Parse Markdown into mistune block tokens."""
    md = mistune.create_markdown(renderer=None, plugins=list(TOKEN_PLUGINS))
    return md(markdown)


def _plain_text(tokens: list[Token]) -> str:
    parts: list[str] = []
    for token in tokens:
        if "raw" in token:
            parts.append(token["raw"])
        elif token["type"] in ("softbreak", "linebreak"):
            parts.append(" ")
        parts.append(_plain_text(token.get("children", [])))
    return "".join(parts)


class DocxBuilder:
    """Writes mistune tokens into a python-docx Document."""

    def __init__(self, basedir: Path | None = None, title: str = "") -> None:
        """Initialize builder.

        Args:
            basedir: Directory local image references resolve against
            title: Document title stored in the core properties
        """
        self._basedir = basedir or Path.cwd()
        self._document: DocumentObject = Document()
        if title:
            self._document.core_properties.title = title

    def build(self, tokens: list[Token]) -> bytes:
        """Render tokens and return the serialized document."""
        for token in tokens:
            self._block(token)

        buffer = io.BytesIO()
        self._document.save(buffer)
        return buffer.getvalue()

    def _block(self, token: Token, depth: int = 0) -> None:
        kind = token["type"]
        doc = self._document

        if kind == "heading":
            level = min(token["attrs"]["level"], 9)
            heading = doc.add_heading(level=level)
            self._inline(heading, token["children"])
        elif kind in ("paragraph", "block_text"):
            paragraph = doc.add_paragraph()
            self._inline(paragraph, token["children"])
        elif kind == "block_code":
            paragraph = doc.add_paragraph()
            run = paragraph.add_run(token["raw"].rstrip("\n"))
            run.font.name = CODE_FONT
            run.font.size = Pt(9)
        elif kind == "block_quote":
            for child in token["children"]:
                if child["type"] == "paragraph":
                    paragraph = doc.add_paragraph(style="Quote")
                    self._inline(paragraph, child["children"])
                else:
                    self._block(child)
        elif kind == "list":
            self._list(token, depth)
        elif kind == "block_html":
            self._html(token["raw"])
        elif kind == "thematic_break":
            doc.add_paragraph("")
        elif kind == "table":
            self._table(token)
        elif kind == "blank_line":
            pass
        else:
            logger.debug(f"Skipping unsupported token type in DOCX output: {kind}")

    def _list(self, token: Token, depth: int) -> None:
        ordered = token["attrs"].get("ordered", False)
        base = "List Number" if ordered else "List Bullet"
        style = base if depth == 0 else f"{base} {min(depth + 1, 3)}"

        for item in token["children"]:
            checked = item.get("attrs", {}).get("checked") if item["type"] == "task_list_item" else None
            for child in item.get("children", []):
                if child["type"] == "list":
                    self._list(child, depth + 1)
                elif child["type"] in ("paragraph", "block_text"):
                    paragraph = self._document.add_paragraph(style=style)
                    if checked is not None:
                        paragraph.add_run("☑ " if checked else "☐ ")
                    self._inline(paragraph, child["children"])
                else:
                    self._block(child)

    def _table(self, token: Token) -> None:
        rows: list[list[Token]] = []
        for section in token["children"]:
            if section["type"] == "table_head":
                rows.append(section["children"])
            else:
                rows.extend(row["children"] for row in section["children"])

        if not rows:
            return

        columns = max(len(row) for row in rows)
        table = self._document.add_table(rows=len(rows), cols=columns)
        table.style = "Table Grid"
        for row_index, cells in enumerate(rows):
            for col_index, cell in enumerate(cells):
                paragraph = table.cell(row_index, col_index).paragraphs[0]
                self._inline(paragraph, cell["children"], bold=row_index == 0)

    def _html(self, raw: str) -> None:
        images = DATA_URI_RE.findall(raw)
        if not images:
            logger.debug("Dropping raw HTML block from DOCX output")
            return

        for encoded in images:
            self._data_uri_picture(self._document.add_paragraph(), encoded)

    def _data_uri_picture(self, paragraph: Paragraph, encoded: str, alt: str = "") -> None:
        try:
            self._picture(paragraph, base64.b64decode(encoded, validate=True))
        except (binascii.Error, UnrecognizedImageError) as e:
            logger.warning(f"Skipping unreadable inline image in DOCX output: {e}")
            if alt:
                paragraph.add_run(alt)

    def _picture(self, paragraph: Paragraph, data: bytes) -> None:
        shape = paragraph.add_run().add_picture(io.BytesIO(data))
        if shape.width > MAX_IMAGE_WIDTH:
            height = shape.height
            ratio = MAX_IMAGE_WIDTH / shape.width
            shape.width = MAX_IMAGE_WIDTH
            shape.height = int(height * ratio)

    def _inline(
        self,
        paragraph: Paragraph,
        tokens: list[Token],
        *,
        bold: bool = False,
        italic: bool = False,
        strike: bool = False,
    ) -> None:
        for token in tokens:
            kind = token["type"]
            if kind == "text":
                run = paragraph.add_run(token["raw"])
                run.bold = bold or None
                run.italic = italic or None
                run.font.strike = strike or None
            elif kind == "strong":
                self._inline(paragraph, token["children"], bold=True, italic=italic, strike=strike)
            elif kind == "emphasis":
                self._inline(paragraph, token["children"], bold=bold, italic=True, strike=strike)
            elif kind == "strikethrough":
                self._inline(paragraph, token["children"], bold=bold, italic=italic, strike=True)
            elif kind == "codespan":
                run = paragraph.add_run(token["raw"])
                run.font.name = CODE_FONT
            elif kind == "link":
                text = _plain_text(token["children"])
                url = token["attrs"]["url"]
                paragraph.add_run(text if text == url else f"{text} ({url})")
            elif kind == "image":
                self._image(paragraph, token)
            elif kind == "linebreak":
                paragraph.add_run().add_break()
            elif kind == "softbreak":
                paragraph.add_run(" ")
            elif kind == "inline_html":
                for encoded in DATA_URI_RE.findall(token["raw"]):
                    self._data_uri_picture(paragraph, encoded)
            else:
                self._inline(paragraph, token.get("children", []), bold=bold, italic=italic, strike=strike)

    def _image(self, paragraph: Paragraph, token: Token) -> None:
        url = token["attrs"]["url"]
        alt = _plain_text(token.get("children", []))

        match = DATA_URI_RE.match(url)
        if match:
            self._data_uri_picture(paragraph, match.group(1), alt)
            return

        path = self._basedir / url
        if "://" not in url and path.is_file():
            try:
                self._picture(paragraph, path.read_bytes())
                return
            except (OSError, UnrecognizedImageError) as e:
                logger.warning(f"Could not embed image {url}: {e}")

        paragraph.add_run(alt or url)


def build_docx(markdown: str, config: Any) -> bytes:
    """Build a DOCX document from Markdown.

    Args:
        markdown: Markdown body with diagrams already inlined
        config: Effective Config (basedir, document_title)

    Returns:
        Serialized .docx bytes
    """
    builder = DocxBuilder(Path(config.basedir), title=config.document_title)
    return builder.build(parse_tokens(markdown))
