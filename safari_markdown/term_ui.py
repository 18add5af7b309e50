"""Terminal output using Rich.

Status lines go to stderr so stdout carries nothing but the Markdown and
can be piped or redirected.
"""

from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from .session import Phase


# Status console (stderr) and output console (stdout)
console = Console(stderr=True)
output_console = Console(highlight=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Print helpers
# ═══════════════════════════════════════════════════════════════════════════════

def print_success(message: str):
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str):
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}")


def print_info(message: str):
    """Print an info message."""
    console.print(f"[cyan]→[/cyan] {message}")


def print_warning(message: str):
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_markdown(text: str, title: Optional[str] = None):
    """Render finished Markdown in a panel."""
    output_console.print(Panel(Markdown(text), title=title, border_style="cyan"))


# ═══════════════════════════════════════════════════════════════════════════════
# Conversion progress
# ═══════════════════════════════════════════════════════════════════════════════

class StreamPrinter:
    """Writes Markdown deltas to stdout as they arrive."""

    def __init__(self):
        self.chars = 0

    def write(self, delta: str):
        output_console.print(delta, end="", markup=False, soft_wrap=True)
        self.chars += len(delta)

    def finish(self):
        if self.chars:
            output_console.print()


class StatusReporter:
    """Prints one status line per phase change of a MarkdownConverter.

    Pass `update` as the converter's `on_update` callback.
    """

    def __init__(self):
        self._last_phase: Optional[Phase] = None

    def update(self, converter):
        phase = converter.state.phase
        if phase is self._last_phase:
            return
        self._last_phase = phase

        if phase is Phase.CONNECTING:
            print_info(f"{converter.source_title} ({converter.page_char_count} chars)")
            print_info(converter.status_text)
        elif phase in (Phase.READING_PAGE, Phase.CONVERTING):
            print_info(converter.status_text)
        elif phase is Phase.DONE:
            print_success(f"{converter.status_text} from {converter.page_char_count} chars of page text")
        elif phase is Phase.ERROR:
            print_error(converter.status_text)
        elif phase is Phase.IDLE:
            print_warning("Cancelled")
