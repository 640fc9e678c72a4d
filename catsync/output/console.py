# catsync Console Output
# Rich-based console output for change sets, runs, sessions and progress events

from typing import Optional

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from catsync.remote.client import ReadinessReport
from catsync.sync.detector import ChangeSet
from catsync.sync.engine import RunResult, RunStatus, SessionSummary
from catsync.sync.events import EventKind, SyncEvent
from catsync.sync.row import Row

_STATUS_STYLES = {
    RunStatus.NO_CHANGES: ("green", "No changes"),
    RunStatus.PREPARED: ("blue", "Session prepared"),
    RunStatus.COMPLETED: ("green", "Sync completed"),
    RunStatus.PARTIAL: ("yellow", "Sync completed with failures"),
    RunStatus.BLOCKED: ("red", "Sync blocked"),
    RunStatus.FAILED: ("red", "Sync failed"),
}


class Console:
    """
    Console output manager using Rich.

    Also acts as a progress sink so batch events show up while a run is
    in progress.
    """

    def __init__(self, *, verbose: bool = False, colored: bool = True, console: Optional[RichConsole] = None):
        """
        Initialize console.

        Args:
            verbose: Enable verbose output.
            colored: Enable colored output.
            console: Rich console to write to.
        """
        self.verbose = verbose
        self._console = console or RichConsole(force_terminal=colored, no_color=not colored)

    def print(self, *args, **kwargs) -> None:
        """Print to console."""
        self._console.print(*args, **kwargs)

    def print_error(self, message: str) -> None:
        """Print error message."""
        self._console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_success(self, message: str) -> None:
        """Print success message."""
        self._console.print(f"[green]{message}[/green]")

    def print_info(self, message: str) -> None:
        """Print info message."""
        self._console.print(f"[blue]{message}[/blue]")

    # -------------------- progress sink --------------------

    def emit(self, event: SyncEvent) -> None:
        """Render a progress event."""
        if event.kind == EventKind.BATCH_START:
            if self.verbose:
                self._console.print(
                    f"[dim]Batch {event.batch_number}/{event.total_batches}: "
                    f"{event.counts.get('items', 0)} items[/dim]"
                )
        elif event.kind == EventKind.BATCH_COMPLETE:
            failed = event.counts.get("failed", 0)
            marker = "[green]✓[/green]" if not failed and not event.message else "[yellow]![/yellow]"
            self._console.print(
                f"{marker} Batch {event.batch_number}/{event.total_batches}: "
                f"{event.counts.get('succeeded', 0)} sent, {failed} failed "
                f"[dim]({event.elapsed_seconds:.1f}s)[/dim]"
            )
        elif event.kind == EventKind.ITEM_FAILED:
            row_id = event.details.get("row_id") or event.details.get("item_id", "?")
            self._console.print(f"    [red]✗[/red] row {row_id}: {event.message}")
        elif event.kind == EventKind.SUMMARY and self.verbose:
            counts = ", ".join(f"{key}={value}" for key, value in event.counts.items())
            self._console.print(f"[dim]Summary: {counts} ({event.elapsed_seconds:.1f}s)[/dim]")

    # -------------------- reports --------------------

    def print_change_set(self, dataset_id: str, change_set: ChangeSet) -> None:
        """
        Print a change set.

        Args:
            dataset_id: Dataset the rows belong to.
            change_set: Classification to display.
        """
        parts = []
        if change_set.to_create:
            parts.append(f"[yellow]{len(change_set.to_create)} to create[/yellow]")
        if change_set.to_update:
            parts.append(f"[yellow]{len(change_set.to_update)} to update[/yellow]")
        if change_set.to_delete:
            parts.append(f"[red]{len(change_set.to_delete)} to delete[/red]")
        if change_set.unchanged:
            parts.append(f"[green]{len(change_set.unchanged)} unchanged[/green]")
        if change_set.skipped:
            parts.append(f"[red]{len(change_set.skipped)} skipped[/red]")

        summary = ", ".join(parts) if parts else "[dim]no rows[/dim]"
        self._console.print(f"[bold]{dataset_id}[/bold]: {summary}")

        for label, icon, rows in (
            ("create", "[yellow]+[/yellow]", change_set.to_create),
            ("update", "[yellow]↑[/yellow]", change_set.to_update),
            ("delete", "[red]×[/red]", change_set.to_delete),
        ):
            for row in rows:
                self._console.print(f"    {icon} {_row_label(row)} [dim]({label})[/dim]")

        if self.verbose:
            for row in change_set.unchanged:
                self._console.print(f"    [green]✓[/green] [dim]{_row_label(row)}[/dim]")

        for warning in change_set.warnings:
            self.print_warning(warning)

    def print_run_result(self, result: RunResult) -> None:
        """Print the summary panel of a run or resume."""
        color, title = _STATUS_STYLES.get(result.status, ("white", result.status.value))

        lines = [f"[{color}]{title}[/{color}]"]
        if result.dataset_id:
            lines.append(f"Dataset: {result.dataset_id}")
        if result.session_id:
            lines.append(f"Session: {result.session_id}")
        lines.append(
            f"Created: {result.created}, updated: {result.updated}, deleted: {result.deleted}, "
            f"failed: {result.failed}"
        )
        lines.append(f"Unchanged: {result.unchanged}, skipped: {result.skipped}, pending: {result.pending}")
        if result.fatal_error:
            lines.append(f"[red]{result.fatal_error}[/red]")

        self._console.print()
        self._console.print(Panel("\n".join(lines), title="Summary", border_style=color))

        for warning in result.warnings:
            self.print_warning(warning)

        if result.session_id and result.status in (RunStatus.PARTIAL, RunStatus.FAILED, RunStatus.PREPARED):
            self._console.print(f"[dim]→ Continue: catsync resume {result.session_id} --retry-failed[/dim]")
            self._console.print(f"[dim]→ Discard:  catsync cleanup {result.session_id}[/dim]")

    def print_session_summary(self, summary: SessionSummary) -> None:
        """Print a persisted session's progress and statistics."""
        table = Table(show_header=True, header_style="bold", title=f"Session {summary.session_id}")
        table.add_column("Metric")
        table.add_column("Value", justify="right")

        table.add_row("Dataset", summary.dataset_id)
        table.add_row("Created", summary.created_at)
        table.add_row("Progress", f"{summary.progress.get('current', 0)}/{summary.progress.get('total', 0)}")
        for status, count in summary.counts.items():
            table.add_row(status.capitalize(), str(count))
        for name, value in summary.stats.items():
            table.add_row(f"[dim]{name}[/dim]", str(value))

        self._console.print(table)

    def print_readiness(self, report: ReadinessReport) -> None:
        """Print remote readiness checks."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("Check")
        table.add_column("Result")

        def mark(ok: bool) -> str:
            return "[green]ok[/green]" if ok else "[red]failed[/red]"

        table.add_row("Connectivity", mark(report.connectivity))
        table.add_row("Permissions", mark(report.permissions))
        quota = mark(report.quota_ok)
        if report.quota_used is not None and report.quota_limit is not None:
            quota += f" [dim]({report.quota_used}/{report.quota_limit})[/dim]"
        table.add_row("Quota headroom", quota)
        self._console.print(table)

        if report.shop_name:
            self._console.print(f"Shop: [bold]{report.shop_name}[/bold]")
        for message in report.messages:
            self.print_warning(message)

    def print_config_summary(self, config_path: str, datasets: dict[str, str]) -> None:
        """Print configuration summary."""
        names = "\n".join(f"  {name} [dim]({kind})[/dim]" for name, kind in sorted(datasets.items()))
        self._console.print(
            Panel(
                f"Config: {config_path}\nDatasets: {len(datasets)}\n{names}",
                title="catsync Configuration",
                border_style="blue",
            )
        )


def _row_label(row: Row) -> str:
    name = row.get("title") or row.get("sku") or row.get("key") or row.get("src") or ""
    remote = f"#{row.id}" if row.id else "new"
    return f"row {row.row_id} {remote} {name}".rstrip()


def create_console(*, verbose: bool = False, colored: bool = True) -> Console:
    """
    Create a console instance.

    Args:
        verbose: Enable verbose output.
        colored: Enable colored output.

    Returns:
        Console instance.
    """
    return Console(verbose=verbose, colored=colored)
