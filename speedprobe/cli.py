"""CLI entry point for speedprobe."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import click

from speedprobe import __version__
from speedprobe.config import (
    DEFAULT_DOWNLOAD_BYTES,
    DEFAULT_PING_SAMPLES,
    DEFAULT_UPLOAD_BYTES,
    SCAN_CONCURRENCY,
)
from speedprobe.errors import ScanError, SpeedTestError
from speedprobe.models import AlertSettings, MeasurementConfig, MeasurementResult, ScanConfig, ScanResult

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    from speedprobe.display import console

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=verbose)],
        force=True,
    )


def _interrupted() -> None:
    from speedprobe.display import console

    console.print("\n[yellow]Interrupted.[/yellow]")
    sys.exit(130)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--history-file", type=click.Path(dir_okay=False), default=None, help="History file [default: app dir]")
@click.option("--cache-file", type=click.Path(dir_okay=False), default=None, help="Scan cache file [default: app dir]")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, history_file: Optional[str], cache_file: Optional[str]) -> None:
    """speedprobe: network speed test and local device discovery."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["history_file"] = history_file
    ctx.obj["cache_file"] = cache_file


def _history(ctx: click.Context):
    from speedprobe.storage import HistoryStore

    return HistoryStore(ctx.obj.get("history_file"))


# ── test ──────────────────────────────────────────────────────────────


@main.command()
@click.option("-s", "--server", "server_name", default=None, help="Test server by name")
@click.option("--best-server", is_flag=True, help="Pick the lowest-latency server first")
@click.option("-n", "--samples", default=DEFAULT_PING_SAMPLES, help="Ping samples", show_default=True)
@click.option("--download-mb", default=DEFAULT_DOWNLOAD_BYTES / 1e6, help="Download size in MB", show_default=True)
@click.option("--upload-mb", default=DEFAULT_UPLOAD_BYTES / 1e6, help="Upload size in MB", show_default=True)
@click.option("-t", "--timeout", "test_timeout", type=float, default=None, help="Ceiling for the whole test in seconds")
@click.option("--alert-below", type=float, default=None, help="Warn when download is below this many Mbps")
@click.option("--no-save", is_flag=True, help="Do not add the result to history")
@click.option("--json", "json_output", is_flag=True, help="Output JSON to stdout")
@click.pass_context
def test(
    ctx: click.Context,
    server_name: Optional[str],
    best_server: bool,
    samples: int,
    download_mb: float,
    upload_mb: float,
    test_timeout: Optional[float],
    alert_below: Optional[float],
    no_save: bool,
    json_output: bool,
) -> None:
    """Measure ping, jitter, download and upload."""
    from speedprobe.display import render_error, render_result
    from speedprobe.export import export_json
    from speedprobe.servers import get_server

    config = MeasurementConfig(
        sample_count=samples,
        download_bytes=int(download_mb * 1e6),
        upload_bytes=int(upload_mb * 1e6),
        test_timeout=test_timeout,
    )
    if server_name:
        try:
            config.server = get_server(server_name)
        except ValueError as exc:
            render_error(str(exc))
            sys.exit(1)

    alert = AlertSettings(enabled=alert_below is not None, threshold_mbps=alert_below or 0.0)

    try:
        result = asyncio.run(_run_test(config, alert, best_server, quiet=json_output))
    except KeyboardInterrupt:
        _interrupted()
    except SpeedTestError as exc:
        render_error(str(exc))
        sys.exit(1)

    if not no_save:
        try:
            _history(ctx).add(result)
        except OSError as exc:
            render_error(f"Could not save result: {exc}")

    if json_output:
        click.echo(export_json([result]))
    else:
        render_result(result)


def _notify_low_speed(result: MeasurementResult) -> None:
    from speedprobe.display import render_warning

    render_warning(f"Download speed {result.download_mbps:.2f} Mbps is below your alert threshold")


async def _run_test(
    config: MeasurementConfig,
    alert: AlertSettings,
    best_server: bool,
    quiet: bool,
) -> MeasurementResult:
    from speedprobe.display import PhaseProgress
    from speedprobe.orchestrator import MeasurementOrchestrator
    from speedprobe.servers import find_best_server

    if best_server and config.server is None:
        config.server = await find_best_server()

    progress = None if quiet else PhaseProgress()
    orchestrator = MeasurementOrchestrator(
        config,
        progress_callback=progress.update if progress else None,
        alert_settings=alert,
        notifier=_notify_low_speed,
    )
    if progress:
        progress.server_name = orchestrator.server.name
        progress.start()
    try:
        return await orchestrator.run()
    finally:
        if progress:
            progress.finish()


# ── scan ──────────────────────────────────────────────────────────────


@main.command()
@click.option("-p", "--prefix", default=None, help="Subnet prefix such as 192.168.1 [default: local /24]")
@click.option("--refresh", is_flag=True, help="Ignore a fresh cached scan")
@click.option("-c", "--concurrency", default=SCAN_CONCURRENCY, help="Addresses probed at once", show_default=True)
@click.option("-t", "--timeout", "scan_timeout", type=float, default=None, help="Ceiling for the whole scan in seconds")
@click.option("--json", "json_output", is_flag=True, help="Output JSON to stdout")
@click.pass_context
def scan(
    ctx: click.Context,
    prefix: Optional[str],
    refresh: bool,
    concurrency: int,
    scan_timeout: Optional[float],
    json_output: bool,
) -> None:
    """Discover devices on the local network."""
    from speedprobe.display import render_error, render_scan
    from speedprobe.export import export_scan_json
    from speedprobe.storage import ScanCache

    cache = ScanCache(ctx.obj.get("cache_file"))
    cached = None if refresh else cache.load()
    if cached is not None and prefix is not None and cached.subnet_prefix != prefix:
        cached = None

    if cached is not None:
        result = cached
    else:
        config = ScanConfig(concurrency=concurrency, scan_timeout=scan_timeout)
        try:
            result = asyncio.run(_run_scan(config, prefix, quiet=json_output))
        except KeyboardInterrupt:
            _interrupted()
        except (ScanError, ValueError) as exc:
            render_error(str(exc))
            sys.exit(1)
        if result.error:
            logger.info("Not caching incomplete scan: %s", result.error)
        else:
            try:
                cache.save(result)
            except OSError as exc:
                logger.warning("Could not cache scan: %s", exc)

    if json_output:
        click.echo(export_scan_json(result))
    else:
        render_scan(result, cached=cached is not None)


async def _run_scan(config: ScanConfig, prefix: Optional[str], quiet: bool) -> ScanResult:
    from speedprobe.display import ScanProgress
    from speedprobe.scanner import DiscoveryScanner

    progress = None if quiet else ScanProgress(prefix or "local")
    scanner = DiscoveryScanner(config, progress_callback=progress.update if progress else None)
    if progress:
        progress.start()
    try:
        return await scanner.scan(prefix)
    finally:
        if progress:
            progress.finish()


# ── history ───────────────────────────────────────────────────────────


@main.group(invoke_without_command=True)
@click.option("-n", "--limit", default=20, help="Results to show", show_default=True)
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show saved results (newest first)."""
    if ctx.invoked_subcommand is None:
        from speedprobe.display import render_history

        render_history(_history(ctx).recent(limit))


@history.command("stats")
@click.pass_context
def history_stats(ctx: click.Context) -> None:
    """Summarize all saved results."""
    from speedprobe.display import render_statistics

    render_statistics(_history(ctx).statistics())


@history.command("delete")
@click.argument("result_id")
@click.pass_context
def history_delete(ctx: click.Context, result_id: str) -> None:
    """Delete one result by id (a unique prefix is enough)."""
    from speedprobe.display import console, render_error

    store = _history(ctx)
    matches = [r.id for r in store.all() if r.id.startswith(result_id)]
    if len(matches) != 1:
        render_error(f"No unique result matches {result_id!r}")
        sys.exit(1)
    store.delete(matches[0])
    console.print(f"[dim]Deleted {matches[0]}[/dim]")


@history.command("clear")
@click.option("--older-than", "days", type=int, default=None, help="Only delete results older than N days")
@click.confirmation_option(prompt="Delete saved results?")
@click.pass_context
def history_clear(ctx: click.Context, days: Optional[int]) -> None:
    """Delete saved results."""
    from speedprobe.display import console

    store = _history(ctx)
    if days is None:
        store.clear()
        console.print("[dim]History cleared[/dim]")
    else:
        removed = store.delete_older_than(days)
        console.print(f"[dim]Deleted {removed} results[/dim]")


# ── export ────────────────────────────────────────────────────────────


@main.command()
@click.option("-f", "--format", "fmt", type=click.Choice(["csv", "json"]), default="csv", show_default=True)
@click.option("-o", "--output", default=None, help="Write to file instead of stdout")
@click.option("-n", "--limit", type=int, default=None, help="Only the N most recent results")
@click.pass_context
def export(ctx: click.Context, fmt: str, output: Optional[str], limit: Optional[int]) -> None:
    """Export saved results as CSV or JSON."""
    from speedprobe.display import console
    from speedprobe.export import export_csv, export_json, write_to_file

    store = _history(ctx)
    results = store.recent(limit) if limit is not None else store.all()
    content = export_csv(results) if fmt == "csv" else export_json(results)

    if output:
        write_to_file(content, output)
        console.print(f"[dim]{len(results)} results written to {output}[/dim]")
    else:
        click.echo(content, nl=False)


# ── servers ───────────────────────────────────────────────────────────


@main.command()
def servers() -> None:
    """Probe the test servers and show their latency."""
    from speedprobe.display import render_servers
    from speedprobe.servers import DEFAULT_SERVERS, probe_servers

    try:
        results = asyncio.run(probe_servers(DEFAULT_SERVERS))
    except KeyboardInterrupt:
        _interrupted()

    reachable = [(s, o) for s, o in results if o.succeeded]
    best = min(reachable, key=lambda pair: pair[1].elapsed_ms)[0] if reachable else None
    render_servers(results, best)


if __name__ == "__main__":
    main()
