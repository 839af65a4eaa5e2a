from typing import Iterable, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Create a stderr console for harness logging
error_console = Console(stderr=True)

_SEVERITY_RANKS = {
    "debug": 0,
    "info": 1,
    "success": 1,
    "warning": 2,
    "error": 3,
    "critical": 4,
}


class ClusterLog:
    """
    Harness log output. Everything goes to stderr so it interleaves with the
    daemons' own unbuffered stderr logging in test output.

    The level is per instance; each orchestrator owns one and hands it to
    its daemons.
    """

    def __init__(self, level: str = "INFO") -> None:
        self.level = level.upper()

    def enabled_for(self, severity: str) -> bool:
        threshold = _SEVERITY_RANKS.get(self.level.lower(), 1)
        return _SEVERITY_RANKS.get(severity, 1) >= threshold

    def log(self, message: str, severity: str = "info") -> None:
        """
        Print harness messages to stderr with color coding.
        """
        if not self.enabled_for(severity):
            return

        style = "white"
        prefix = "[CLUSTER]"

        if severity == "debug":
            style = "dim"
        elif severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        # Daemon argv and paths may contain brackets; keep them literal.
        error_console.print(f"[{style}]{prefix} {escape(message)}[/{style}]", highlight=False)

    def print_nodes(self, rows: Iterable[Sequence[str]], title: str = "Cluster Nodes") -> None:
        """
        Prints a table with one row per daemon: role, id, pid, identity, rpc, http, running.
        """
        table = Table(title=title, header_style="bold")
        table.add_column("Role", style="bold")
        table.add_column("Daemon")
        table.add_column("PID")
        table.add_column("Identity")
        table.add_column("RPC")
        table.add_column("HTTP")
        table.add_column("Running")

        for row in rows:
            table.add_row(*[str(cell) for cell in row])

        error_console.print(table)
        error_console.print()
