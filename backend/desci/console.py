"""Console UI for the research agent using Rich."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, Prompt
from rich.table import Table


class ConsoleUI:
    """Rich-based console output and prompts."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def info(self, message: str) -> None:
        self._console.print(message)

    def success(self, message: str) -> None:
        self._console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self._console.print(f"[red]Error:[/red] {message}")

    def rule(self, title: str = "") -> None:
        self._console.rule(title)

    def reply(self, speaker: str, text: str) -> None:
        self._console.print(Panel(text, title=speaker, title_align="left"))

    def ask(self, message: str, default: Optional[str] = None) -> str:
        return Prompt.ask(message, default=default, console=self._console) or ""

    def ask_float(self, message: str, default: float) -> float:
        return FloatPrompt.ask(message, default=default, console=self._console)

    def confirm(self, message: str, default: bool = True) -> bool:
        return Confirm.ask(message, default=default, console=self._console)

    def choose(self, message: str, choices: list[str]) -> str:
        return Prompt.ask(message, choices=choices, default=choices[0], console=self._console)

    def display_papers(self, papers: list[dict], title: str = "Papers") -> None:
        """Display paper summaries (camelCase API payloads) in a table."""
        table = Table(title=title)
        table.add_column("#", justify="right")
        table.add_column("Paper ID", overflow="fold")
        table.add_column("Title", overflow="fold")
        table.add_column("Authors", overflow="fold")
        table.add_column("Fee", justify="right")

        for i, p in enumerate(papers, 1):
            table.add_row(
                str(i),
                p.get("paperId", ""),
                p.get("title", ""),
                ", ".join(p.get("authors") or []) or "Unknown",
                f"{p.get('fee', 0):g}",
            )
        self._console.print(table)

    def display_quote(self, quote: dict) -> None:
        table = Table(title="Quote")
        table.add_column("Item", overflow="fold")
        table.add_column("Tokens", justify="right")
        for p in quote.get("papers", []):
            table.add_row(p.get("title", ""), f"{p.get('fee', 0):g}")
        table.add_row("[dim]Platform fee[/dim]", f"{quote.get('platformFee', 0):g}")
        table.add_row("[bold]Total[/bold]", f"[bold]{quote.get('totalCost', 0):g}[/bold]")
        self._console.print(table)
