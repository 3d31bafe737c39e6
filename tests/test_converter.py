"""Tests for the conversion pipeline."""

import logging
import threading
from pathlib import Path
from unittest.mock import patch

import pytest
from markpdf.config import Config, OutputFormat, merge_configs
from markpdf.core.cache import DiagramImageStore
from markpdf.core.converter import (
    ConversionRequest,
    Converter,
    output_path_for,
)
from markpdf.errors import ConfigurationError, OutputGenerationError, ValidationError

from tests.conftest import FakeEngine, FakeOutputGenerator, FakeRenderer

DIAGRAM_DOC = "# Test\n\n```mermaid\ngraph TD\n A --> B\n```\n\nDone."


def make_converter(
    image_store: DiagramImageStore,
    generator: FakeOutputGenerator | None = None,
    engine: FakeEngine | None = None,
    fail_on: set[int] | None = None,
) -> Converter:
    return Converter(
        engine=engine or FakeEngine(),  # type: ignore[arg-type]
        output_generator=generator or FakeOutputGenerator(),
        renderer_factory=lambda engine, store, timeout: FakeRenderer(store, fail_on),
        store=image_store,
    )


class TestConversionRequest:
    """Tests for input validation."""

    @pytest.mark.asyncio
    async def test__neither_path_nor_content__raises(self, image_store: DiagramImageStore) -> None:
        converter = make_converter(image_store)

        with pytest.raises(ValidationError, match="exactly one of path or content"):
            await converter.convert(ConversionRequest())

    @pytest.mark.asyncio
    async def test__both_path_and_content__raises(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        converter = make_converter(image_store)

        with pytest.raises(ValidationError):
            await converter.convert(ConversionRequest(path=tmp_path / "a.md", content="# A"))


class TestReadingSource:
    """Tests for source reading errors."""

    @pytest.mark.asyncio
    async def test__missing_file__not_found_message(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        missing = tmp_path / "missing.md"
        converter = make_converter(image_store)

        with pytest.raises(ValidationError) as exc_info:
            await converter.convert(ConversionRequest(path=missing))

        assert str(exc_info.value) == (
            f'File not found: "{missing}". '
            "Please check that the file exists and the path is correct."
        )

    @pytest.mark.asyncio
    async def test__unreadable_file__permission_message(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "locked.md"
        converter = make_converter(image_store)

        with (
            patch("markpdf.core.converter._read_source", side_effect=PermissionError(13, "denied")),
            pytest.raises(ValidationError, match="Permission denied") as exc_info,
        ):
            await converter.convert(ConversionRequest(path=source))

        assert str(source) in str(exc_info.value)

    @pytest.mark.asyncio
    async def test__undecodable_file__generic_message(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "latin.md"
        source.write_bytes(b"caf\xe9")
        converter = make_converter(image_store)

        with pytest.raises(ValidationError, match=r'Failed to read markdown file ".*latin.md"'):
            await converter.convert(ConversionRequest(path=source))

    @pytest.mark.asyncio
    async def test__configured_encoding__used(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "latin.md"
        source.write_bytes(b"# caf\xe9")
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)

        await converter.convert(
            ConversionRequest(path=source, destination=""),
            None,
            {"md_file_encoding": "latin-1"},
        )

        assert "café" in generator.calls[0]["html"]


class TestOutputDestination:
    """Tests for destination resolution and writing."""

    def test__output_path_for__swaps_extension(self) -> None:
        assert output_path_for(Path("docs/readme.md"), OutputFormat.HTML) == Path(
            "docs/readme.html"
        )

    @pytest.mark.asyncio
    async def test__path_input__written_next_to_source(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "doc.md"
        source.write_text("# Doc")
        converter = make_converter(image_store)

        output = await converter.convert(ConversionRequest(path=source), None, {"basedir": tmp_path})

        assert output.filename == str(tmp_path / "doc.pdf")
        assert (tmp_path / "doc.pdf").read_bytes() == b"%PDF-1.7"

    @pytest.mark.asyncio
    async def test__html_format__html_extension_and_text(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "doc.md"
        source.write_text("# Doc")
        generator = FakeOutputGenerator("<html>ok</html>")
        converter = make_converter(image_store, generator)

        output = await converter.convert(
            ConversionRequest(path=source, output_format=OutputFormat.HTML),
            None,
            {"basedir": tmp_path},
        )

        assert output.filename == str(tmp_path / "doc.html")
        assert (tmp_path / "doc.html").read_text() == "<html>ok</html>"

    @pytest.mark.asyncio
    async def test__content_input__written_to_stdout(
        self,
        image_store: DiagramImageStore,
        capsysbinary: pytest.CaptureFixture[bytes],
    ) -> None:
        converter = make_converter(image_store)

        output = await converter.convert(ConversionRequest(content="# Hi"))

        assert output.filename == "stdout"
        assert capsysbinary.readouterr().out == b"%PDF-1.7"

    @pytest.mark.asyncio
    async def test__stdout_write__runs_in_worker_thread(
        self,
        image_store: DiagramImageStore,
    ) -> None:
        threads: list[threading.Thread] = []
        converter = make_converter(image_store)

        with patch(
            "markpdf.core.converter._write_stdout",
            side_effect=lambda content: threads.append(threading.current_thread()),
        ):
            await converter.convert(ConversionRequest(content="# Hi"))

        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()

    @pytest.mark.asyncio
    async def test__empty_destination__nothing_written(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
        capsysbinary: pytest.CaptureFixture[bytes],
    ) -> None:
        source = tmp_path / "doc.md"
        source.write_text("# Doc")
        converter = make_converter(image_store)

        output = await converter.convert(ConversionRequest(path=source, destination=""))

        assert output.content == b"%PDF-1.7"
        assert not (tmp_path / "doc.pdf").exists()
        assert capsysbinary.readouterr().out == b""


class TestConfigLayering:
    """Tests for front matter and config layer precedence."""

    @pytest.mark.asyncio
    async def test__front_matter__applied(self, image_store: DiagramImageStore) -> None:
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)

        await converter.convert(
            ConversionRequest(content="---\ndocument_title: From FM\n---\n# Body", destination="")
        )

        config = generator.calls[0]["config"]
        assert config.document_title == "From FM"
        assert "<title>From FM</title>" in generator.calls[0]["html"]
        assert "document_title" not in generator.calls[0]["html"]

    @pytest.mark.asyncio
    async def test__front_matter__overrides_base_config(
        self,
        image_store: DiagramImageStore,
        test_config: Config,
    ) -> None:
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)
        base = test_config.with_overrides(document_title="Base", css="p {}")

        await converter.convert(
            ConversionRequest(content="---\ndocument_title: FM\n---\n", destination=""), base
        )

        config = generator.calls[0]["config"]
        assert config.document_title == "FM"
        assert config.css == "p {}"

    @pytest.mark.asyncio
    async def test__front_matter_footer_over_merged_base__enables_header_footer(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        """A footer template in front matter turns on the header/footer of a merged base."""
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)
        base = merge_configs({"basedir": str(tmp_path)})
        text = "---\npdf_options:\n  footer_template: '<span>1</span>'\n---\n# x"

        await converter.convert(ConversionRequest(content=text, destination=""), base)

        pdf_options = generator.calls[0]["config"].pdf_options
        assert pdf_options["footer_template"] == "<span>1</span>"
        assert pdf_options["display_header_footer"] is True

    @pytest.mark.asyncio
    async def test__layers__override_front_matter(self, image_store: DiagramImageStore) -> None:
        """CLI and config-file layers win over front matter."""
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)

        await converter.convert(
            ConversionRequest(
                content="---\ndocument_title: FM\npdf_options:\n  landscape: true\n---\n",
                destination="",
            ),
            None,
            {"document_title": "CLI"},
            {"pdf_options": {"format": "Letter"}},
        )

        config = generator.calls[0]["config"]
        assert config.document_title == "CLI"
        assert config.pdf_options["landscape"] is True
        assert config.pdf_options["format"] == "Letter"

    @pytest.mark.asyncio
    async def test__invalid_front_matter__warns_and_continues(
        self,
        image_store: DiagramImageStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)
        text = "---\ntitle: [unclosed\n---\n# Body"

        with caplog.at_level(logging.WARNING, logger="markpdf.core.converter"):
            await converter.convert(ConversionRequest(content=text, destination=""))

        assert "Failed to parse front matter" in caplog.text
        assert generator.calls[0]["markdown"] == text

    @pytest.mark.asyncio
    async def test__disabled_engine__warns_and_continues(
        self,
        image_store: DiagramImageStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)

        with caplog.at_level(logging.WARNING, logger="markpdf.core.converter"):
            await converter.convert(
                ConversionRequest(content="---js\n{}\n---\n# Body", destination="")
            )

        assert "Front matter was ignored" in caplog.text

    @pytest.mark.asyncio
    async def test__invalid_merged_config__raises(self, image_store: DiagramImageStore) -> None:
        converter = make_converter(image_store)

        with pytest.raises(ConfigurationError, match="port must be between"):
            await converter.convert(ConversionRequest(content="# A"), None, {"port": 70000})


class TestDiagrams:
    """Tests for diagram handling inside a conversion."""

    @pytest.mark.asyncio
    async def test__diagram__inlined_and_cleaned_up(self, image_store: DiagramImageStore) -> None:
        generator = FakeOutputGenerator()
        engine = FakeEngine()
        converter = make_converter(image_store, generator, engine)

        await converter.convert(ConversionRequest(content=DIAGRAM_DOC, destination=""))

        call = generator.calls[0]
        assert call["markdown"].count("data:image/png;base64,") == 1
        assert '<figure class="diagram">' in call["html"]
        assert engine.opens == 1
        assert engine.closes == 1
        assert not image_store.image_dir.exists()

    @pytest.mark.asyncio
    async def test__no_diagrams__engine_not_opened(self, image_store: DiagramImageStore) -> None:
        """Documents without diagrams never launch the browser for diagrams."""
        engine = FakeEngine()
        converter = make_converter(image_store, engine=engine)

        await converter.convert(ConversionRequest(content="# Plain", destination=""))

        assert engine.opens == 0
        assert not image_store.image_dir.exists()

    @pytest.mark.asyncio
    async def test__failed_diagram__warning_logged(
        self,
        image_store: DiagramImageStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator, fail_on={0})

        with caplog.at_level(logging.WARNING, logger="markpdf.core.converter"):
            await converter.convert(ConversionRequest(content=DIAGRAM_DOC, destination=""))

        assert "Some diagrams could not be rendered" in caplog.text
        assert "Failed to render diagram 1" in caplog.text
        assert "```mermaid" in generator.calls[0]["markdown"]

    @pytest.mark.asyncio
    async def test__cleanup_after_output_failure(self, image_store: DiagramImageStore) -> None:
        """Diagram images are removed even when output generation fails."""
        converter = make_converter(image_store, FakeOutputGenerator(None))

        with pytest.raises(OutputGenerationError):
            await converter.convert(ConversionRequest(content=DIAGRAM_DOC, destination=""))

        assert not image_store.image_dir.exists()


class TestOutputGeneration:
    """Tests for missing output."""

    @pytest.mark.asyncio
    async def test__no_output__raises(self, image_store: DiagramImageStore) -> None:
        converter = make_converter(image_store, FakeOutputGenerator(None))

        with pytest.raises(OutputGenerationError, match=r"Failed to create PDF\."):
            await converter.convert(ConversionRequest(content="# A", destination=""))

    @pytest.mark.asyncio
    async def test__no_output_in_devtools__devtools_message(
        self,
        image_store: DiagramImageStore,
    ) -> None:
        converter = make_converter(image_store, FakeOutputGenerator(None))

        with pytest.raises(OutputGenerationError, match="No file is generated with --devtools."):
            await converter.convert(
                ConversionRequest(content="# A", destination=""), None, {"devtools": True}
            )

    @pytest.mark.asyncio
    async def test__relative_path__directory_under_basedir(
        self,
        image_store: DiagramImageStore,
        tmp_path: Path,
    ) -> None:
        source = tmp_path / "guide" / "intro.md"
        source.parent.mkdir()
        source.write_text("# Intro")
        generator = FakeOutputGenerator()
        converter = make_converter(image_store, generator)

        await converter.convert(
            ConversionRequest(path=source, destination=""), None, {"basedir": tmp_path}
        )

        assert generator.calls[0]["relative_path"] == "guide"

    @pytest.mark.asyncio
    async def test__docx_without_generator__no_browser(
        self,
        image_store: DiagramImageStore,
    ) -> None:
        """DOCX output is built without opening the browser."""
        engine = FakeEngine()
        converter = Converter(engine=engine, store=image_store)  # type: ignore[arg-type]

        output = await converter.convert(
            ConversionRequest(content="# Word", output_format=OutputFormat.DOCX, destination="")
        )

        assert isinstance(output.content, bytes)
        assert output.content.startswith(b"PK")
        assert engine.opens == 0
