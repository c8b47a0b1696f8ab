"""Poolmon command-line interface.

Runs the health-check daemon and offers a few one-shot tools for checking
backends, inspecting the director's host list and validating weight and
configuration files.
"""

import asyncio
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from poolmon import __version__
from poolmon.config import PoolmonConfig
from poolmon.director.client import DirectorClient
from poolmon.errors import ConfigError, PoolmonError
from poolmon.health.scanner import HealthScanner
from poolmon.lifecycle.daemon import PidFile, PidFileError, daemonize
from poolmon.lifecycle.logsink import reopen_handler, setup_logging
from poolmon.lifecycle.reload import ReloadTrigger
from poolmon.lifecycle.service import PoolmonService
from poolmon.weights.registry import WeightRegistry

console = Console()


def _load_config(path: Optional[str], **overrides) -> PoolmonConfig:
    try:
        config = PoolmonConfig.from_file(path) if path else PoolmonConfig()
        return config.merged(**overrides)
    except ConfigError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name='poolmon')
def cli():
    """Poolmon: director backend health checker.

    Scans director backends and takes failing ones out of service.
    """
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--port', '-p', 'ports', type=int, multiple=True, help='Plain port to check (repeatable)')
@click.option('--ssl', 'ssl_ports', type=int, multiple=True, help='TLS port to check (repeatable)')
@click.option('--timeout', '-t', type=float, help='Per-port timeout in seconds')
@click.option('--interval', '-i', type=float, help='Seconds between scan cycles')
@click.option('--socket', '-s', help='Director admin socket path')
@click.option('--weightfile', '-w', 'weight_file', help='Weight override file')
@click.option('--watch-weights', is_flag=True, help='Reload the weight file when it changes')
@click.option('--logfile', '-l', 'log_file', help='Log file, required unless --foreground')
@click.option('--pidfile', 'pid_file', help='Pidfile path')
@click.option('--metrics-port', type=int, help='Serve Prometheus metrics on this port')
@click.option('--foreground', '-f', is_flag=True, help='Do not detach')
@click.option('--debug', '-d', is_flag=True, help='Debug logging')
def run(config, ports, ssl_ports, timeout, interval, socket, weight_file, watch_weights,
        log_file, pid_file, metrics_port, foreground, debug):
    """Run the scan loop."""
    cfg = _load_config(
        config, ports=ports, ssl_ports=ssl_ports, timeout=timeout, interval=interval,
        socket=socket, weight_file=weight_file, log_file=log_file, pid_file=pid_file,
        metrics_port=metrics_port,
        watch_weights=True if watch_weights else None,
        foreground=True if foreground else None,
        debug=True if debug else None,
    )
    try:
        cfg.check_daemon_logging()
    except ConfigError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    handler = setup_logging(cfg.log_file, cfg.debug)
    trigger = ReloadTrigger()
    trigger.subscribe(lambda: reopen_handler(handler))

    pidfile = PidFile(cfg.pid_file)
    try:
        pidfile.acquire()
    except PidFileError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    try:
        if not cfg.foreground:
            daemonize()
        pidfile.write()
        service = PoolmonService(cfg, reload_trigger=trigger)
        asyncio.run(service.run())
    finally:
        pidfile.release()


@cli.command()
@click.argument('hosts', nargs=-1, required=True)
@click.option('--config', '-c', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--port', '-p', 'ports', type=int, multiple=True, help='Plain port to check (repeatable)')
@click.option('--ssl', 'ssl_ports', type=int, multiple=True, help='TLS port to check (repeatable)')
@click.option('--timeout', '-t', type=float, help='Per-port timeout in seconds')
def scan(hosts, config, ports, ssl_ports, timeout):
    """Check HOSTS once and report each port, without touching the director."""
    cfg = _load_config(config, ports=ports, ssl_ports=ssl_ports, timeout=timeout)
    scanner = HealthScanner(cfg.ports, cfg.ssl_ports, cfg.timeout)

    async def scan_hosts():
        return await asyncio.gather(*(scanner.scan_ports(h) for h in hosts))

    results = asyncio.run(scan_hosts())

    table = Table(title="Port Checks")
    table.add_column("Host", style="cyan")
    table.add_column("Port", style="blue")
    table.add_column("TLS", style="blue")
    table.add_column("Result", style="green")
    table.add_column("Time", style="yellow")
    table.add_column("Detail", style="white")

    all_healthy = True
    for host, checks in zip(hosts, results):
        for check in checks:
            status = "✓ ok" if check.ok else "[red]✗ failed[/red]"
            detail = check.error or (check.banner or b"").decode("utf-8", "replace").strip()
            table.add_row(host, str(check.port), "yes" if check.tls else "no", status,
                          f"{check.elapsed:.3f}s", detail)
        if not all(c.ok for c in checks):
            all_healthy = False

    console.print(table)
    sys.exit(0 if all_healthy else 1)


@cli.command()
@click.option('--config', '-c', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--socket', '-s', help='Director admin socket path')
def hosts(config, socket):
    """Show the director's backend list."""
    cfg = _load_config(config, socket=socket)
    director = DirectorClient(cfg.socket, cfg.director_timeout)
    try:
        records = asyncio.run(director.list_hosts())
    except PoolmonError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    table = Table(title="Director Hosts")
    table.add_column("Host", style="cyan")
    table.add_column("Weight", style="yellow")
    table.add_column("Clients", style="magenta")
    table.add_column("State", style="green")
    for record in records:
        state = "enabled" if record.weight else "[red]disabled[/red]"
        table.add_row(record.address, str(record.weight), str(record.clients), state)
    console.print(table)


@cli.group()
def weights():
    """Weight file tools."""
    pass


@weights.command('check')
@click.argument('weight_file', type=click.Path(dir_okay=False))
def check_weights(weight_file):
    """Parse WEIGHT_FILE and show the resolved weights."""
    registry = WeightRegistry()
    if not registry.load(weight_file):
        console.print(f"[bold red]✗ Cannot read {weight_file}[/bold red]")
        sys.exit(1)

    table = Table(title="Resolved Weights")
    table.add_column("Address", style="cyan")
    table.add_column("Weight", style="yellow")
    for address, weight in sorted(registry.snapshot().items()):
        table.add_row(address, str(weight))
    console.print(table)

    for error in registry.errors:
        console.print(f"[yellow]! {error}[/yellow]")
    if registry.errors:
        sys.exit(1)
    console.print("[bold green]✓ Weight file is valid[/bold green]")


@cli.group()
def config():
    """Configuration tools."""
    pass


@config.command('validate')
@click.argument('config_file', default='poolmon.yml')
def validate_config(config_file):
    """Validate configuration file."""
    console.print(f"[bold blue]Validating configuration: {config_file}[/bold blue]")
    try:
        cfg = PoolmonConfig.from_file(config_file)
    except ConfigError as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        sys.exit(1)
    console.print(f"ports={cfg.ports} ssl_ports={cfg.ssl_ports} timeout={cfg.timeout}s "
                  f"interval={cfg.interval}s socket={cfg.socket}")
    console.print("[bold green]✓ Configuration is valid[/bold green]")


if __name__ == '__main__':
    cli()
