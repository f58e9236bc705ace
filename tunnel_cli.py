#!/usr/bin/env python3
"""bytetunnel CLI - transparent TCP relay with optional stream repair.

Every client connecting to the listen port gets its own connection to the
fixed upstream service. Bytes are copied verbatim in both directions; each
direction can be captured to a file, echoed to the console, or repaired when
a trigger sequence is not followed by its required continuation byte.

Examples:
    # Plain relay: local 1234 -> localhost:27017
    python tunnel_cli.py start

    # Capture both directions of every session
    python tunnel_cli.py start --upstream-host 10.0.0.5 --upstream-port 8080 --capture-dir captures

    # Repair WebDAV requests that lost their leading slash
    python tunnel_cli.py start --upstream-port 80 --correct client --preset webdav
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

# Ensure the bytetunnel package is importable
if __name__ == "__main__":
    import os
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from bytetunnel.config import (
    DIRECTIONS,
    TRIGGER_PRESETS,
    CaptureConfig,
    TunnelConfig,
    expand_directions,
    load_config,
)
from bytetunnel.relay import ConnectionBroker

app = typer.Typer(
    name="bytetunnel",
    help="bytetunnel - transparent TCP relay with trigger-based stream repair",
    add_completion=False,
)
console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(
    config_path: Optional[Path],
    listen_host: Optional[str],
    listen_port: Optional[int],
    upstream_host: Optional[str],
    upstream_port: Optional[int],
    connect_timeout: Optional[float],
    capture_dir: Optional[Path],
    echo: str,
    correct: str,
    preset: str,
) -> TunnelConfig:
    """Merge the optional config file with command-line overrides."""
    cfg = load_config(config_path) if config_path else TunnelConfig()

    if listen_host is not None:
        cfg.listen_host = listen_host
    if listen_port is not None:
        cfg.listen_port = listen_port
    if upstream_host is not None:
        cfg.upstream_host = upstream_host
    if upstream_port is not None:
        cfg.upstream_port = upstream_port
    if connect_timeout is not None:
        cfg.connect_timeout = connect_timeout
    if capture_dir is not None:
        cfg.capture = CaptureConfig(directory=capture_dir, template=cfg.capture.template)

    echo_dirs = expand_directions(echo)
    if echo_dirs:
        cfg.echo = echo_dirs
    for direction in expand_directions(correct):
        cfg.enable_preset(preset, direction)

    cfg.validate()
    return cfg


def show_config(cfg: TunnelConfig) -> None:
    table = Table(title="Tunnel Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")

    table.add_row("Listen", f"{cfg.listen_host}:{cfg.listen_port}")
    table.add_row("Upstream", f"{cfg.upstream_host}:{cfg.upstream_port}")
    for direction in DIRECTIONS:
        triggers = cfg.triggers_for(direction)
        desc = ", ".join(
            f"{t.sequence!r}→{bytes([t.continuation])!r}" for t in triggers
        ) or "off"
        table.add_row(f"Correction ({direction})", desc)
    if cfg.capture.enabled:
        table.add_row("Capture", str(cfg.capture.directory / cfg.capture.template))
    table.add_row("Echo", ", ".join(cfg.echo) or "off")

    console.print(table)
    console.print()


@app.command()
def start(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON/YAML config file (command-line options override it)",
    ),
    listen_host: Optional[str] = typer.Option(
        None,
        "--listen-host",
        "-lh",
        help="Address to accept clients on (default: 0.0.0.0)",
    ),
    listen_port: Optional[int] = typer.Option(
        None,
        "--listen-port",
        "-lp",
        help="Port to accept clients on (default: 1234)",
    ),
    upstream_host: Optional[str] = typer.Option(
        None,
        "--upstream-host",
        "-uh",
        help="Upstream service host (default: localhost)",
    ),
    upstream_port: Optional[int] = typer.Option(
        None,
        "--upstream-port",
        "-up",
        help="Upstream service port (default: 27017)",
    ),
    connect_timeout: Optional[float] = typer.Option(
        None,
        "--connect-timeout",
        "-t",
        help="Seconds to wait for the upstream connection",
    ),
    capture_dir: Optional[Path] = typer.Option(
        None,
        "--capture-dir",
        "-o",
        help="Write each session's traffic to per-direction files in this directory",
    ),
    echo: str = typer.Option(
        "none",
        "--echo",
        "-e",
        help="Echo forwarded bytes: none, client (stdout), upstream (stderr), both",
    ),
    correct: str = typer.Option(
        "none",
        "--correct",
        help="Apply trigger correction to: none, client, upstream, both",
    ),
    preset: str = typer.Option(
        "webdav",
        "--preset",
        help=f"Trigger preset used with --correct ({', '.join(TRIGGER_PRESETS)})",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Start the relay.

    \b
    Common configurations:
      Plain relay:  --listen-port 1234 --upstream-host db.local --upstream-port 27017
      Capture:      --capture-dir ./captures
      WebDAV fix:   --correct client --preset webdav
    """
    setup_logging(verbose)

    try:
        cfg = build_config(
            config,
            listen_host,
            listen_port,
            upstream_host,
            upstream_port,
            connect_timeout,
            capture_dir,
            echo,
            correct,
            preset,
        )
    except (ValueError, FileNotFoundError, RuntimeError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    show_config(cfg)
    broker = ConnectionBroker(cfg)

    console.print(Panel.fit("[bold green]Starting tunnel...[/bold green]"))

    async def run():
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def signal_handler():
            console.print("\n[yellow]Shutting down...[/yellow]")
            stop_event.set()

        try:
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

        try:
            await broker.start()
            console.print("[bold green]Tunnel running. Press Ctrl+C to stop.[/bold green]")

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=60)
                except asyncio.TimeoutError:
                    stats = broker.get_stats()
                    console.print(
                        f"[dim]Stats: {stats['sessions_opened']} sessions, "
                        f"{stats['sessions_active']} active, "
                        f"{stats['failed_connects']} failed connects[/dim]"
                    )
        except OSError as e:
            console.print(f"[red]Cannot listen on {cfg.listen_host}:{cfg.listen_port}: {e}[/red]")
            raise typer.Exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")
        finally:
            await broker.stop()
            console.print("[green]Tunnel stopped.[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


@app.command()
def info() -> None:
    """Display tunnel capabilities and usage information."""
    presets = "\n".join(
        f"  • {name}: " + ", ".join(f"{seq!r} → {cont!r}" for seq, cont in pairs)
        for name, pairs in TRIGGER_PRESETS.items()
    )
    console.print(
        Panel.fit(
            "[bold]bytetunnel - Transparent TCP Relay[/bold]\n\n"
            "Relays every client connection to one fixed upstream service,\n"
            "copying bytes in both directions without altering them.\n\n"
            "[bold]Features:[/bold]\n"
            "  • One upstream connection per client, torn down together\n"
            "  • Per-direction capture files (--capture-dir)\n"
            "  • Console echo of forwarded bytes (--echo)\n"
            "  • Trigger correction: insert a missing byte after a\n"
            "    configured sequence (--correct, --preset, --config)\n\n"
            f"[bold]Trigger presets:[/bold]\n{presets}\n",
            title="About",
        )
    )


if __name__ == "__main__":
    app()
