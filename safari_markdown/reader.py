"""Page content boundary.

The converter only needs something with a blocking `read_page()` that returns
a `PageContent` or raises a `ReaderError`. Two sources ship here:
- TextPageReader: a file or stream (stdin) plus caller-supplied URL/title
- CommandPageReader: any external command printing {"url","title","bodyText"}
  JSON, e.g. an osascript wrapper around the browser's front tab
"""

import json
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, TextIO, Union

from .errors import EmptyPageError, ReaderNotRunningError, ReaderScriptError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 60_000  # ~15K tokens
DEFAULT_TITLE = "Untitled"


@dataclass(frozen=True)
class PageContent:
    """A page as read from the browser. Never mutated after creation."""
    url: str
    title: str
    body_text: str


class PageReader(Protocol):
    """Anything that can produce the current page. May block."""

    def read_page(self) -> PageContent: ...


def truncate_body(body: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Cut `body` to `max_chars` and say so at the end."""
    if len(body) <= max_chars:
        return body
    return body[:max_chars] + f"\n\n[Content truncated at {max_chars} characters]"


def normalize_page(
    url: str,
    title: Optional[str],
    body: Optional[str],
    max_chars: int = DEFAULT_MAX_CHARS,
) -> PageContent:
    """Validate raw reader output and build the PageContent value.

    Raises:
        EmptyPageError: if the body is empty or whitespace only
    """
    body = body or ""
    if not body.strip():
        raise EmptyPageError(
            "Page content is empty. The page may still be loading, or it may be a PDF/image."
        )
    return PageContent(
        url=url or "",
        title=title or DEFAULT_TITLE,
        body_text=truncate_body(body, max_chars),
    )


class TextPageReader:
    """Reads the page body from a file path or an open text stream."""

    def __init__(
        self,
        source: Union[str, Path, TextIO],
        url: str = "",
        title: Optional[str] = None,
        max_chars: int = DEFAULT_MAX_CHARS,
    ):
        self.source = source
        self.url = url
        self.title = title
        self.max_chars = max_chars

    def read_page(self) -> PageContent:
        if isinstance(self.source, (str, Path)):
            path = Path(self.source)
            try:
                body = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ReaderScriptError(f"Could not read page content: {e}") from e
            title = self.title or path.stem
        else:
            body = self.source.read()
            title = self.title

        return normalize_page(self.url, title, body, self.max_chars)


class CommandPageReader:
    """
    Runs an external command that prints the current page as JSON.

    Expected stdout: {"url": "...", "title": "...", "bodyText": "..."}.
    """

    def __init__(
        self,
        command: Union[str, list[str]],
        timeout: float = 30.0,
        max_chars: int = DEFAULT_MAX_CHARS,
    ):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout
        self.max_chars = max_chars

    def read_page(self) -> PageContent:
        if not self.command:
            raise ReaderNotRunningError("No reader command configured.")

        logger.debug("Running reader command: %s", self.command)
        try:
            proc = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ReaderNotRunningError(f"Reader command not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ReaderScriptError(f"Reader command timed out after {self.timeout:g}s") from e

        if proc.returncode != 0:
            detail = proc.stderr.strip() or f"exit code {proc.returncode}"
            raise ReaderScriptError(f"Could not read page content: {detail}")

        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise ReaderScriptError(f"Reader command printed invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ReaderScriptError("Reader command output must be a JSON object")

        return normalize_page(
            str(data.get("url") or ""),
            data.get("title"),
            data.get("bodyText"),
            self.max_chars,
        )
