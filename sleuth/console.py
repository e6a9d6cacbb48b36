"""User-facing console output and logging setup."""

import contextlib
import logging
from collections.abc import Iterator

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

DEBUG_LOG_FILE = "sleuth.debug"

console = Console()


def setup_logging(debug: bool = False, log_file: str = DEBUG_LOG_FILE) -> None:
    """Send debug logs to a file when debugging, otherwise keep only warnings."""
    root = logging.getLogger("sleuth")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if debug:
        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)
    else:
        root.addHandler(logging.NullHandler())
        root.setLevel(logging.WARNING)
    root.propagate = False


class NullReporter:
    """Reporter that shows nothing; used by library callers and tests."""

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    @contextlib.contextmanager
    def thinking(self, message: str = "Thinking...") -> Iterator[None]:
        yield


class RichReporter(NullReporter):
    """Reports session progress on a rich console."""

    def __init__(self, out: Console | None = None):
        self.console = out or console

    def info(self, message: str) -> None:
        self.console.print(f"[cyan][INFO][/cyan] {escape(message)}", highlight=False)

    def success(self, message: str) -> None:
        self.console.print(f"[bold green][SUCCESS][/bold green] {escape(message)}", highlight=False)

    def error(self, message: str) -> None:
        self.console.print(f"[bold red][ERROR][/bold red] {escape(message)}", highlight=False)

    @contextlib.contextmanager
    def thinking(self, message: str = "Thinking...") -> Iterator[None]:
        with self.console.status(f"[cyan]{escape(message)}[/cyan]"):
            yield

    def result(self, text: str) -> None:
        self.console.print()
        self.console.print(Panel(Text(text), title="[bold]Result[/bold]", border_style="green"))

    def cost_breakdown(self, lines: list[str]) -> None:
        self.console.print()
        self.console.print("[bold yellow]Session Cost Breakdown:[/bold yellow]")
        for line in lines:
            self.console.print(Text(line))
