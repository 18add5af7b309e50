#!/usr/bin/env python3
"""safari-markdown CLI - convert a page to Markdown through a local Codex app server.

Usage:
    safari-markdown --file page.txt --url https://example.com/post --title "Post"
    pbpaste | safari-markdown --url https://example.com/post
    safari-markdown --reader-cmd "osascript read_front_tab.applescript" -o page.md

The Codex app server must already be listening:
    codex-app-server --listen ws://127.0.0.1:8080

Environment variables (alternative to args):
    CODEX_HOST                      App server host (default: 127.0.0.1)
    CODEX_PORT                      App server port (default: 8080)
    SAFARI_MARKDOWN_MODEL           Model for thread/start
    SAFARI_MARKDOWN_EFFORT          Reasoning effort for turn/start (default: medium)
    SAFARI_MARKDOWN_STEP_TIMEOUT    Seconds without progress before giving up (default: none)
    SAFARI_MARKDOWN_MAX_CHARS       Page body limit (default: 60000)
    SAFARI_MARKDOWN_VERIFY_ACCEPT   Verify Sec-WebSocket-Accept (default: false)
"""

import argparse
import asyncio
import io
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .config import ConverterConfig, get_config_value
from .converter import MarkdownConverter
from .errors import ConfigError
from .reader import CommandPageReader, PageReader, TextPageReader
from .runtime import get_version
from .session import Phase
from .term_ui import StatusReporter, StreamPrinter, print_error, print_markdown, print_success

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("safari_markdown")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


class SafariMarkdownCLI:
    """Headless single-page conversion."""

    def __init__(
        self,
        reader: PageReader,
        config: ConverterConfig,
        output_path: Optional[Path] = None,
        render: bool = False,
    ):
        self.reader = reader
        self.config = config
        self.output_path = output_path
        self.render = render

        self._status = StatusReporter()
        self._stream = StreamPrinter()

    async def run(self) -> int:
        """Run one conversion. Returns exit code."""
        converter = MarkdownConverter(
            self.reader,
            self.config,
            on_update=self._status.update,
            on_delta=None if self.render else self._stream.write,
        )

        loop = asyncio.get_running_loop()
        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, converter.cancel)
                handled.append(sig)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        try:
            state = await converter.run()
        finally:
            for sig in handled:
                loop.remove_signal_handler(sig)
            self._stream.finish()
            await converter.close()

        if state.phase is Phase.IDLE:
            return EXIT_CANCELLED
        if state.phase is not Phase.DONE:
            return EXIT_FAILED

        if self.render:
            print_markdown(converter.output, title=converter.source_title)
        if self.output_path:
            self.output_path.write_text(converter.output, encoding="utf-8")
            print_success(f"Saved to {self.output_path}")
        return EXIT_OK


def build_reader(args: argparse.Namespace, max_chars: int) -> PageReader:
    """Pick the page source from parsed arguments."""
    if args.reader_cmd:
        return CommandPageReader(args.reader_cmd, max_chars=max_chars)
    if args.file:
        return TextPageReader(args.file, url=args.url, title=args.title, max_chars=max_chars)
    # Drain stdin before the event loop starts; a read blocked in a worker
    # thread would keep asyncio.run from exiting after Ctrl+C
    body = io.StringIO(sys.stdin.read())
    return TextPageReader(body, url=args.url, title=args.title, max_chars=max_chars)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="safari-markdown",
        description="Convert a web page to clean Markdown via a local Codex app server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  safari-markdown --file page.txt --url https://example.com --title "Example"
  pbpaste | safari-markdown --url https://example.com
  safari-markdown --reader-cmd ./read_front_tab.sh --output page.md
  safari-markdown --file page.txt --port 9000 --timeout 60 --render
        """,
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--file",
        type=Path,
        help="Read page text from this file (default: stdin)",
    )
    source.add_argument(
        "--reader-cmd",
        help='Command printing {"url","title","bodyText"} JSON for the current page',
    )

    parser.add_argument("--url", default="", help="Source URL for the citation line")
    parser.add_argument("--title", default=None, help="Page title (default: file name or 'Untitled')")
    parser.add_argument("--host", default=None, help="App server host (or set CODEX_HOST)")
    parser.add_argument("--port", type=int, default=None, help="App server port (or set CODEX_PORT)")
    parser.add_argument("--model", default=None, help="Model for thread/start")
    parser.add_argument("--effort", default=None, help="Reasoning effort for turn/start")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Fail when a step makes no progress for this many seconds (default: wait forever)",
    )
    parser.add_argument("-o", "--output", type=Path, default=None, help="Also write Markdown to this file")
    parser.add_argument(
        "--render",
        action="store_true",
        help="Render the finished Markdown instead of streaming raw text",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging (shows JSON-RPC traffic)",
    )
    return parser


def main():
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = ConverterConfig.from_env(
            host=args.host,
            port=args.port,
            model=args.model,
            effort=args.effort,
            step_timeout=args.timeout,
        )
        max_chars = get_config_value("MAX_CHARS")
    except ConfigError as e:
        print_error(str(e))
        sys.exit(EXIT_FAILED)

    if not args.file and not args.reader_cmd and sys.stdin.isatty():
        print_error("No page content. Use --file, --reader-cmd, or pipe text on stdin")
        sys.exit(EXIT_FAILED)

    log.debug("Config: %s", config)
    try:
        reader = build_reader(args, max_chars)
    except KeyboardInterrupt:
        sys.exit(EXIT_CANCELLED)

    cli = SafariMarkdownCLI(
        reader=reader,
        config=config,
        output_path=args.output,
        render=args.render,
    )
    exit_code = asyncio.run(cli.run())
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
