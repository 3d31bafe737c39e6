"""markpdf - Markdown to PDF, HTML and DOCX with rendered diagrams."""

__version__ = "0.1.0"

from markpdf.api import md_to_pdf
from markpdf.config import Config, OutputFormat
from markpdf.core.converter import ConversionOutput, ConversionRequest, Converter
from markpdf.errors import (
    ConfigurationError,
    MarkpdfError,
    OutputGenerationError,
    ValidationError,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "ConversionOutput",
    "ConversionRequest",
    "Converter",
    "MarkpdfError",
    "OutputFormat",
    "OutputGenerationError",
    "ValidationError",
    "__version__",
    "md_to_pdf",
]
