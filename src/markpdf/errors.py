"""Error types raised by the conversion pipeline."""


class MarkpdfError(Exception):
    """Base class for all markpdf errors."""

    code = "MARKPDF_ERROR"


class ValidationError(MarkpdfError):
    """Input has the wrong shape or the source cannot be read."""

    code = "VALIDATION_ERROR"


class ConfigurationError(MarkpdfError):
    """Configuration options are malformed."""

    code = "CONFIGURATION_ERROR"


class OutputGenerationError(MarkpdfError):
    """The rendering engine produced no final artifact."""

    code = "OUTPUT_GENERATION_ERROR"


class DiagramRenderError(MarkpdfError):
    """A single diagram could not be rendered.

    Never escapes the diagram pipeline: it is reported as a warning string.
    """

    code = "DIAGRAM_RENDER_ERROR"


class RenderTimeout(DiagramRenderError):
    """The rendered diagram node did not appear within the timeout."""

    code = "DIAGRAM_RENDER_TIMEOUT"


class RenderIncomplete(DiagramRenderError):
    """The rendered diagram node was missing at capture time."""

    code = "DIAGRAM_RENDER_INCOMPLETE"
