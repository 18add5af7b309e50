"""safari-markdown - convert a browser page to Markdown via a local Codex app server."""

from .config import ConverterConfig
from .converter import MarkdownConverter
from .reader import CommandPageReader, PageContent, TextPageReader
from .session import ConversionState, Phase
from .websocket import RawWebSocket

__all__ = [
    "CommandPageReader",
    "ConversionState",
    "ConverterConfig",
    "MarkdownConverter",
    "PageContent",
    "Phase",
    "RawWebSocket",
    "TextPageReader",
]
