"""Rich-based display for uploadcue-sim.

This module provides visual output for the simulator using Rich library.
It's decoupled from the simulation logic - it just renders data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


@dataclass
class EventRecord:
    """A recent event for display."""

    timestamp: datetime
    event_type: str
    item_id: str
    kind: str | None = None
    details: str = ""


@dataclass
class SimulationState:
    """Current state of the simulation for display.

    This is the data contract between the runner and display.
    The runner updates this; the display renders it.
    """

    # Queue stats
    submitted: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    # Passes
    passes: int = 0
    offline_passes: int = 0
    online: bool = True

    # Timing
    start_time: float = 0.0
    elapsed: float = 0.0

    # Recent events (most recent first)
    events: list[EventRecord] = field(default_factory=list)
    max_events: int = 10

    # Config display
    target_count: int = 0
    error_rate: float = 0.0
    offline_rate: float = 0.0
    max_attempts: int = 3

    @property
    def throughput(self) -> float:
        """Items completed per second."""
        if self.elapsed > 0:
            return self.completed / self.elapsed
        return 0.0

    @property
    def progress(self) -> float:
        """Fraction settled, completed or out of attempts (0.0 to 1.0)."""
        if self.submitted > 0:
            return (self.completed + self.failed) / self.submitted
        return 0.0

    def add_event(self, event_type: str, item_id: str, kind: str | None = None, details: str = "") -> None:
        """Add an event to the display log."""
        self.events.insert(0, EventRecord(
            timestamp=datetime.now(),
            event_type=event_type,
            item_id=item_id,
            kind=kind,
            details=details,
        ))
        if len(self.events) > self.max_events:
            self.events = self.events[:self.max_events]


class SimulatorDisplay:
    """Rich-based TUI display for the simulator.

    Shows queue counts, recent events, and the simulation config.
    """

    def __init__(self, state: SimulationState, console: Console | None = None):
        self.state = state
        self.console = console or Console()
        self._live: Live | None = None

    def __enter__(self) -> SimulatorDisplay:
        self._live = Live(
            self._build_layout(),
            console=self.console,
            refresh_per_second=10,
            screen=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args) -> None:
        if self._live:
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        """Update the display with current state."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Panel:
        layout = Layout()
        layout.split_column(
            Layout(self._build_queue_section(), name="queue", size=4),
            Layout(self._build_events_section(), name="events", size=8),
            Layout(self._build_config_section(), name="config", size=3),
        )
        return Panel(
            layout,
            title="[bold cyan]uploadcue-sim[/bold cyan]",
            border_style="cyan",
        )

    def _build_queue_section(self) -> Panel:
        """Build queue stats panel."""
        s = self.state

        stats = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            stats.add_column(justify="left")
        stats.add_row(
            f"[dim]Pending:[/dim] [bold]{s.pending:,}[/bold]",
            f"[dim]Processing:[/dim] [bold yellow]{s.processing}[/bold yellow]",
            f"[dim]Completed:[/dim] [bold green]{s.completed:,}[/bold green]",
            f"[dim]Failed:[/dim] [bold red]{s.failed}[/bold red]",
        )

        network = "[green]ONLINE[/green]" if s.online else "[red]OFFLINE[/red]"
        stats2 = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            stats2.add_column(justify="left")
        stats2.add_row(
            f"[dim]Network:[/dim] {network}",
            f"[dim]Passes:[/dim] [bold]{s.passes}[/bold] ({s.offline_passes} offline)",
            f"[dim]Progress:[/dim] {self._progress_bar(s.progress)} [bold]{s.progress * 100:.0f}%[/bold]",
            f"[dim]Throughput:[/dim] [bold]{s.throughput:.1f}/s[/bold]",
        )

        content = Table.grid(expand=True)
        content.add_row(stats)
        content.add_row(stats2)
        return Panel(content, title="[bold]Queue[/bold]", border_style="blue")

    def _build_events_section(self) -> Panel:
        """Build recent events panel."""
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Time", width=10, style="dim")
        table.add_column("Event", width=12)
        table.add_column("ID", width=14)
        table.add_column("Kind", width=10)
        table.add_column("Details")

        event_styles = {
            "completed": "green",
            "failed": "red",
            "processing": "yellow",
            "offline": "magenta",
            "pass": "cyan",
            "queued": "dim",
        }
        for event in s.events[:6]:
            style = event_styles.get(event.event_type, "white")
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{event.event_type}[/{style}]",
                event.item_id[-14:],
                event.kind or "",
                event.details[:40],
            )

        if not s.events:
            table.add_row("[dim]No events yet[/dim]", "", "", "", "")

        return Panel(table, title="[bold]Recent Events[/bold]", border_style="blue")

    def _build_config_section(self) -> Panel:
        s = self.state

        text = Text()
        text.append("Items: ", style="dim")
        text.append(f"{s.target_count:,}", style="bold")
        text.append("  Error: ", style="dim")
        text.append(f"{s.error_rate*100:.0f}%", style="bold red" if s.error_rate > 0 else "bold")
        text.append("  Offline: ", style="dim")
        text.append(f"{s.offline_rate*100:.0f}%", style="bold magenta" if s.offline_rate > 0 else "bold")
        text.append("  Max attempts: ", style="dim")
        text.append(str(s.max_attempts), style="bold")
        text.append("    Ctrl+C to stop", style="dim")

        return Panel(text, title="[bold]Config[/bold]", border_style="dim")

    @staticmethod
    def _progress_bar(pct: float, width: int = 10) -> str:
        """Create a mini progress bar."""
        pct = min(1.0, max(0.0, pct))
        filled = int(pct * width)
        return f"[green]{'█' * filled}{'░' * (width - filled)}[/green]"


def print_simple_stats(state: SimulationState) -> None:
    """Print a one-line progress update without the TUI."""
    s = state
    done = s.completed + s.failed
    network = "online" if s.online else "offline"
    print(
        f"\r[{done}/{s.submitted}] pass {s.passes} ({network}) "
        f"P:{s.pending} ✓:{s.completed} ✗:{s.failed} "
        f"({s.progress * 100:.0f}%)",
        end="",
        flush=True,
    )


def print_final_summary(state: SimulationState, console: Console | None = None) -> None:
    """Print final summary after simulation."""
    console = console or Console()
    console.print()

    table = Table(title="Simulation Results", show_header=False, border_style="green")
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Submitted", str(state.submitted))
    table.add_row("Completed", f"[green]{state.completed}[/green]")
    table.add_row("Failed", f"[red]{state.failed}[/red]" if state.failed else "0")
    table.add_row("Still pending", str(state.pending))
    table.add_row("Passes", f"{state.passes} ({state.offline_passes} offline)")
    table.add_row("Duration", f"{state.elapsed:.2f}s")

    console.print(table)
