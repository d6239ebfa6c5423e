"""Terminal UI for AstraShell."""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from astra_shell.logging import get_logger
from astra_shell.tools.registry import ToolResult
from astra_shell.tools.tool_call import ToolCallRequest

log = get_logger(__name__)

AFFIRMATIVE = ("y", "yes")
EXIT_WORDS = ("exit",)


class TerminalUI:
    """Terminal UI using rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def print_welcome(self, model: str, tools: list[str]) -> None:
        """Print welcome message."""
        body = f"Model: [bold]{escape(model)}[/bold]\nTools: {escape(', '.join(tools)) or '(none)'}\n\nType '/help' for commands."
        self.console.print(Panel(body, title="AstraShell", expand=False))

    def print_help(self) -> None:
        """Print help message."""
        table = Table(show_header=False, box=None)
        table.add_column("Command", style="cyan")
        table.add_column("Description")
        table.add_row("/help", "Show this help message")
        table.add_row("/clear", "Reset the conversation")
        table.add_row("/stats", "Show session statistics")
        table.add_row("/exit, /quit, exit", "Exit AstraShell")
        self.console.print(table)
        self.console.print("Anything else is sent as a request. Ctrl-C cancels a running request.")

    def print_message(self, role: str, content: str) -> None:
        self.console.print(Text.assemble((f"[{role.upper()}] ", "bold green"), content), highlight=False)

    def print_error(self, error: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(error)}", highlight=False)

    def print_warning(self, warning: str) -> None:
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {escape(warning)}", highlight=False)

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]OK:[/green] {escape(message)}", highlight=False)

    def print_log_line(self, line: str) -> None:
        self.console.print(Text.from_ansi(line), style="dim")

    def print_plan(self, rendered: str) -> None:
        self.console.print(Panel(Text(rendered), title="Proposed plan", expand=False))

    def print_tool_call(self, request: ToolCallRequest) -> None:
        """Print tool call."""
        arguments = json.dumps(request.parameters, ensure_ascii=False, default=str)
        self.console.print(f"[TOOL] {request.tool_name}: {arguments}", style="dim", markup=False, highlight=False)

    def print_tool_result(self, request: ToolCallRequest, result: ToolResult, max_chars: int = 200) -> None:
        """Print a shortened tool result."""
        text = json.dumps(result.to_payload(), ensure_ascii=False, default=str)
        if len(text) > max_chars:
            text = text[:max_chars] + "..."
        style = "dim" if result.success else "red"
        self.console.print(f"[TOOL RESULT] {request.tool_name}: {text}", style=style, markup=False, highlight=False)

    def print_stats(self, stats: dict[str, Any]) -> None:
        table = Table(title="Session statistics")
        table.add_column("Counter", style="cyan")
        table.add_column("Value", justify="right")
        for key, value in stats.items():
            table.add_row(key.replace("_", " "), str(value))
        self.console.print(table)

    def prompt(self, prompt_text: str = "> ") -> str:
        """Prompt for input."""
        return self.console.input(prompt_text)

    def confirm(self, question: str) -> bool:
        """Ask for confirmation; only an explicit yes is affirmative."""
        try:
            response = self.console.input(f"{question} (y/n) ")
        except (EOFError, KeyboardInterrupt):
            return False
        return response.strip().lower() in AFFIRMATIVE

    def handle_special_command(self, cmd: str) -> str | None:
        """Map sentinel commands to actions; plain text passes through."""
        cmd = cmd.strip()

        if cmd.lower() in EXIT_WORDS:
            return "EXIT"
        if not cmd.startswith("/"):
            return cmd

        command = cmd.split(None, 1)[0].lower()

        if command in ("/help", "/h", "/?"):
            self.print_help()
            return None
        elif command == "/clear":
            return "CLEAR"
        elif command == "/stats":
            return "STATS"
        elif command in ("/exit", "/quit", "/q"):
            return "EXIT"
        else:
            self.print_error(f"Unknown command: {command}")
            return None


# Global UI instance
_ui: "TerminalUI | None" = None


def get_ui() -> TerminalUI:
    """Get the global UI instance."""
    global _ui
    if _ui is None:
        _ui = TerminalUI()
    return _ui


def set_ui(ui: TerminalUI) -> None:
    """Set the global UI instance."""
    global _ui
    _ui = ui
