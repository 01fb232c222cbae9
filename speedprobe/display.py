"""Rich terminal output for speedprobe."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from speedprobe.config import FAST_THRESHOLD_MS, MEDIUM_THRESHOLD_MS
from speedprobe.models import (
    DiscoveredDevice,
    HistoryStatistics,
    MeasurementResult,
    Phase,
    ProbeOutcome,
    ProgressUpdate,
    QualityClass,
    ScanResult,
    TestServer,
)

console = Console()

_QUALITY_COLORS = {
    QualityClass.EXCELLENT: "green",
    QualityClass.GOOD: "cyan",
    QualityClass.FAIR: "yellow",
    QualityClass.POOR: "red",
}

_FULL_BLOCK = "█"
_LIGHT_SHADE = "░"
_DASH = "—"


def _color_for_ms(value: float) -> str:
    """Return a Rich color name based on a latency value."""
    if value <= FAST_THRESHOLD_MS:
        return "green"
    elif value <= MEDIUM_THRESHOLD_MS:
        return "yellow"
    return "red"


def _fmt_ms(value: Optional[float], colorize: bool = True) -> Text:
    if value is None:
        return Text(_DASH, style="dim")
    text = f"{value:.1f}ms"
    return Text(text, style=_color_for_ms(value)) if colorize else Text(text)


def _fmt_quality(quality: QualityClass) -> Text:
    return Text(quality.label, style=_QUALITY_COLORS[quality])


def _bar(fraction: float, width: int = 30, color: str = "green") -> str:
    filled = min(int(fraction * width), width)
    return f"[{color}]{_FULL_BLOCK * filled}[/{color}][dim]{_LIGHT_SHADE * (width - filled)}[/dim]"


# ── Progress tracking ─────────────────────────────────────────────────


class PhaseProgress:
    """Live single-line progress for a measurement run.

    Pass ``update`` as the orchestrator's progress callback.
    """

    def __init__(self, server_name: str = ""):
        self.server_name = server_name
        self.phase = Phase.IDLE
        self.fraction = 0.0
        self.value = 0.0
        self.live: Optional[Live] = None

    def _render(self) -> Text:
        unit = "ms" if self.phase == Phase.PING else "Mbps"
        value = f"{self.value:.1f} {unit}" if self.value else ""
        line = f"{_bar(self.fraction)} {self.fraction * 100:5.1f}%  [bold]{self.phase.label}[/bold] {value}"
        return Text.from_markup(line)

    def start(self) -> None:
        console.print(f"[bold]Server:[/bold] {self.server_name}")
        self.live = Live(self._render(), console=console, refresh_per_second=8, transient=True)
        self.live.start()

    def update(self, update: ProgressUpdate) -> None:
        self.phase = update.phase
        self.fraction = update.fraction
        self.value = update.value
        if self.live:
            self.live.update(self._render())

    def finish(self) -> None:
        if self.live:
            self.live.stop()


class ScanProgress:
    """Live progress bar for a subnet scan."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.processed = 0
        self.total = 0
        self.live: Optional[Live] = None

    def _render(self) -> Text:
        fraction = self.processed / self.total if self.total else 0.0
        return Text.from_markup(
            f"{_bar(fraction, color='cyan')} {self.processed}/{self.total}  Scanning {self.prefix}.0/24"
        )

    def start(self) -> None:
        self.live = Live(self._render(), console=console, refresh_per_second=8, transient=True)
        self.live.start()

    def update(self, processed: int, total: int) -> None:
        self.processed, self.total = processed, total
        if self.live:
            self.live.update(self._render())

    def finish(self) -> None:
        if self.live:
            self.live.stop()


# ── Measurement results ───────────────────────────────────────────────


def render_result(result: MeasurementResult) -> None:
    """Print a completed measurement."""
    table = Table(show_header=False, border_style="bright_black", expand=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Download", f"{result.download_mbps:.2f} Mbps")
    table.add_row("Upload", f"{result.upload_mbps:.2f} Mbps")
    table.add_row("Ping", _fmt_ms(result.ping_ms))
    table.add_row("Jitter", _fmt_ms(result.jitter_ms))
    table.add_row("Connection", result.connection_type)
    table.add_row("Server", result.server_label)
    table.add_row("Quality", _fmt_quality(result.quality))

    console.print()
    console.print(table)


def render_history(results: list[MeasurementResult]) -> None:
    if not results:
        console.print("[dim]No saved results.[/dim]")
        return

    table = Table(show_header=True, border_style="bright_black", expand=False, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Down", justify="right")
    table.add_column("Up", justify="right")
    table.add_column("Ping", justify="right")
    table.add_column("Jitter", justify="right")
    table.add_column("Connection")
    table.add_column("Quality")

    for r in results:
        table.add_row(
            r.id[:8],
            r.timestamp.astimezone().strftime("%Y-%m-%d %H:%M"),
            f"{r.download_mbps:.2f}",
            f"{r.upload_mbps:.2f}",
            _fmt_ms(r.ping_ms),
            _fmt_ms(r.jitter_ms),
            r.connection_type,
            _fmt_quality(r.quality),
        )
    console.print(table)


def render_statistics(stats: HistoryStatistics) -> None:
    if not stats.total_tests:
        console.print("[dim]No saved results.[/dim]")
        return

    table = Table(show_header=False, border_style="bright_black", expand=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Tests", str(stats.total_tests))
    table.add_row("Avg download", f"{stats.average_download_mbps:.2f} Mbps")
    table.add_row("Avg upload", f"{stats.average_upload_mbps:.2f} Mbps")
    table.add_row("Avg ping", _fmt_ms(stats.average_ping_ms))
    table.add_row("Avg jitter", _fmt_ms(stats.average_jitter_ms))
    table.add_row("Best download", f"{stats.max_download_mbps:.2f} Mbps")
    table.add_row("Best upload", f"{stats.max_upload_mbps:.2f} Mbps")
    table.add_row("Best ping", _fmt_ms(stats.min_ping_ms))
    for kind, count in sorted(stats.connection_type_breakdown.items()):
        table.add_row(f"  {kind}", str(count))
    for quality in sorted(stats.quality_breakdown, reverse=True):
        table.add_row(Text(f"  {quality.label}"), str(stats.quality_breakdown[quality]))
    console.print(table)


# ── Scan results ──────────────────────────────────────────────────────


def _device_row(device: DiscoveredDevice) -> list:
    name = Text(device.display_name, style="bold" if device.is_current_device else "")
    if device.is_current_device:
        name.append(" (this device)", style="dim")
    return [
        device.address,
        name,
        device.device_type.value,
        device.manufacturer or _DASH,
        _fmt_ms(device.response_time_ms),
        Text(device.identified_by or _DASH, style="dim"),
    ]


def render_scan(scan: ScanResult, cached: bool = False) -> None:
    """Print the devices of a scan, ordered by address."""
    title = f"[bold]{scan.subnet_prefix}.0/24[/bold] [dim]({scan.device_count} devices"
    if cached:
        title += f", cached {scan.age_seconds() / 60:.0f} min ago"
    else:
        title += f", {scan.scan_duration_s:.1f}s"
    title += ")[/dim]"

    table = Table(
        show_header=True,
        border_style="bright_black",
        expand=False,
        header_style="bold",
        title=title,
        title_style="",
    )
    table.add_column("Address", min_width=15)
    table.add_column("Name", min_width=20, max_width=40, overflow="ellipsis")
    table.add_column("Type")
    table.add_column("Manufacturer")
    table.add_column("RTT", justify="right")
    table.add_column("Source")

    for device in scan.devices:
        table.add_row(*_device_row(device))

    console.print()
    console.print(table)
    if scan.error:
        render_warning(scan.error)


# ── Servers ───────────────────────────────────────────────────────────


def render_servers(results: list[tuple[TestServer, ProbeOutcome]], best: Optional[TestServer] = None) -> None:
    table = Table(show_header=True, border_style="bright_black", expand=False, header_style="bold")
    table.add_column("Server", style="bold")
    table.add_column("Location")
    table.add_column("Latency", justify="right")
    table.add_column("")

    for server, outcome in results:
        if outcome.succeeded:
            latency = _fmt_ms(outcome.elapsed_ms)
        else:
            kind = outcome.error_kind.value if outcome.error_kind else "error"
            latency = Text(kind, style="red")
        marker = Text("best", style="green") if best is not None and server == best else Text("")
        table.add_row(server.name, server.location, latency, marker)
    console.print(table)


def render_error(message: str) -> None:
    """Display an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def render_warning(message: str) -> None:
    """Display a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {message}")
