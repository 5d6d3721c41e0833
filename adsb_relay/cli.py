"""Click CLI: the main entry point for adsb-relay.

Commands:
  adsb-relay serve         Poll dump1090 and relay tracks to TCP/UDP/file sinks
  adsb-relay dump FILE     Decode a binary track-batch file and print its records
  adsb-relay config        Show the effective configuration (--save writes it)
"""

from __future__ import annotations

import asyncio
import logging
import math
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import protocol
from .config import load_config, save_config
from .service import RelayService
from .tracker import Track, TrackStatus

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.version_option(version="0.1.0", prog_name="adsb-relay")
def cli():
    """dump1090 track relay: aircraft.json in, radar-frame track batches out."""


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Config file path")
@click.option("--output-file", "-o", type=click.Path(dir_okay=False), default=None, help="Binary track-batch output file")
@click.option("--text-file", "-t", type=click.Path(dir_okay=False), default=None, help="Text track log file")
@click.option("--url", default=None, help="aircraft.json URL")
@click.option("--directory", type=click.Path(file_okay=False), default=None, help="Directory dump1090 writes aircraft.json into")
@click.option("--lat", type=float, default=None, help="Radar latitude (degrees)")
@click.option("--lon", type=float, default=None, help="Radar longitude (degrees)")
@click.option("--height", type=float, default=None, help="Radar height (meters)")
@click.option("--timeout", type=float, default=None, help="Track timeout (feed seconds)")
@click.option("--tcp-port", type=int, default=None, help="TCP broadcast port")
@click.option("--udp-port", type=int, default=None, help="UDP target port on loopback")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def serve(config_path: str | None, output_file: str | None, text_file: str | None,
          url: str | None, directory: str | None, lat: float | None, lon: float | None,
          height: float | None, timeout: float | None, tcp_port: int | None,
          udp_port: int | None, verbose: bool):
    """Relay dump1090 aircraft as tracks until Ctrl+C.

    \b
    Examples:
      adsb-relay serve                                   # Defaults from config
      adsb-relay serve -o tracks.bin -t tracks.txt       # Also log to files
      adsb-relay serve --url http://pi/data/aircraft.json --lat 56.88 --lon 35.93
    """
    _setup_logging(verbose)
    cfg = load_config(config_path)

    # Command-line flags override the config file
    overrides = {
        ("feed", "url"): url,
        ("feed", "directory"): directory,
        ("radar", "latitude"): lat,
        ("radar", "longitude"): lon,
        ("radar", "height"): height,
        ("tracks", "timeout"): timeout,
        ("output", "tcp_port"): tcp_port,
        ("output", "udp_port"): udp_port,
        ("output", "file"): output_file,
        ("output", "text_file"): text_file,
    }
    for (section, key), value in overrides.items():
        if value is not None:
            cfg[section][key] = value

    radar = cfg["radar"]
    console.print(
        f"[bold green]adsb-relay[/] radar at {radar['latitude']:.6f}, "
        f"{radar['longitude']:.6f}, {radar['height']} m (Ctrl+C to stop)"
    )

    service = RelayService(cfg)
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/]")

    _print_track_table(service.table.get_active(), title="Live tracks")
    _print_summary(service.status())


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", type=int, default=None, help="Show only the last N records")
def dump(file: str, limit: int | None):
    """Decode a binary track-batch file and print its records."""
    data = Path(file).read_bytes()
    tracks: list[Track] = []
    batches = 0
    try:
        for batch in protocol.iter_batches(data):
            batches += 1
            tracks.extend(batch.tracks)
    except protocol.ProtocolError as e:
        console.print(f"[red]Stopped at corrupt message after {batches} batches: {e}[/]")

    if limit is not None:
        tracks = tracks[-limit:]
    _print_track_table(tracks, title=f"Track records ({batches} batches)")


@cli.command("config")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Config file path")
@click.option("--save", is_flag=True, help="Write the effective configuration back to the file")
def config_cmd(config_path: str | None, save: bool):
    """Show the effective configuration."""
    cfg = load_config(config_path)

    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for section, values in cfg.items():
        if isinstance(values, dict):
            for key, val in values.items():
                table.add_row(f"{section}.{key}", "-" if val is None else str(val))
        else:
            table.add_row(section, "-" if values is None else str(values))
    console.print(table)

    if save:
        path = save_config(cfg, config_path)
        console.print(f"\n[bold]Config saved:[/] {path}")


def _fmt(value: float, fmt: str = ".0f") -> str:
    return "-" if math.isnan(value) else format(value, fmt)


def _print_track_table(tracks: list[Track], title: str = "Tracks"):
    """Print Rich table of tracks."""
    table = Table(title=title)
    table.add_column("Hex", style="cyan")
    table.add_column("No", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("X (m)", justify="right")
    table.add_column("Y (m)", justify="right")
    table.add_column("H (m)", justify="right")
    table.add_column("Vx", justify="right")
    table.add_column("Vy", justify="right")
    table.add_column("Vh", justify="right")
    table.add_column("Formed", justify="right")

    for t in tracks:
        status = "[red]RESET[/]" if t.status is TrackStatus.RESET else "tracking"
        table.add_row(
            t.hex_id,
            str(t.number),
            t.target_type.name.lower(),
            status,
            _fmt(t.position.x),
            _fmt(t.position.y),
            _fmt(t.position.h),
            _fmt(t.velocity.x, ".1f"),
            _fmt(t.velocity.y, ".1f"),
            _fmt(t.velocity.h, ".1f"),
            f"{t.forming_time:.1f}",
        )

    console.print(table)


def _print_summary(status: dict):
    """Print relay summary."""
    console.print(f"\n[bold]Summary:[/]")
    console.print(f"  Snapshots:   {status['snapshots']} ({status['duplicates']} duplicates)")
    console.print(f"  Live tracks: {status['live_tracks']}")
    console.print(f"  Resets:      {status['resets']}")
    console.print(f"  Messages:    {status['messages']}")
