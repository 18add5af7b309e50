"""Exception types for safari-markdown."""


class SafariMarkdownError(Exception):
    """Base exception for safari-markdown."""


class ConfigError(SafariMarkdownError):
    """Raised when an environment setting cannot be parsed."""


class HandshakeError(SafariMarkdownError):
    """Raised when the WebSocket upgrade response is not acceptable."""


class ReaderError(SafariMarkdownError):
    """Raised when page content cannot be produced.

    The message is shown to the user as-is, so it should say what to do next.
    """


class ReaderNotRunningError(ReaderError):
    """The page source (browser or reader command) is not available."""


class ReaderScriptError(ReaderError):
    """The page source was reachable but the read itself failed."""


class EmptyPageError(ReaderError):
    """The page was read but had no usable text."""
