#!/usr/bin/env python3
"""
unpin - iOS SSL pinning bypass
Main CLI entry point
"""

import sys
import logging
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from unpin import __version__
from unpin.bypass.pinning import BypassConfig, BypassReport
from unpin.bypass.strategies import STRATEGIES, Outcome, strategy_keys
from unpin.core.exceptions import UnpinError

# Setup console
console = Console()

OUTCOME_STYLES = {
    Outcome.HOOKED: "green",
    Outcome.ABSENT: "dim",
    Outcome.LIMITED: "yellow",
    Outcome.FAILED: "bold red",
}


def setup_logging(verbose: bool = False):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.version_option(__version__, prog_name='unpin')
@click.pass_context
def cli(ctx, verbose):
    """
    unpin - iOS SSL pinning bypass

    Attaches to an iOS app with Frida and disables certificate pinning
    in common frameworks and in the system TLS stacks.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    setup_logging(verbose)


@cli.command()
@click.pass_context
def devices(ctx):
    """
    List devices visible to Frida
    """
    try:
        from unpin.core.device_manager import DeviceManager

        found = DeviceManager().list_devices()
        if not found:
            console.print("[yellow]No devices found[/yellow]")
            return

        table = Table(title="Frida Devices")
        table.add_column("Id", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("Type")
        for info in found:
            table.add_row(info.id, info.name, info.type)
        console.print(table)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
def strategies():
    """
    List bypass strategies in execution order

    Keys can be passed to `disable --skip`.
    """
    table = Table(title="Bypass Strategies")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Group", style="magenta")
    table.add_column("Hooks")

    for strategy in STRATEGIES:
        table.add_row(strategy.key, strategy.group, strategy.description)

    console.print(table)


@cli.command()
@click.argument('target')
@click.option('-D', '--device', 'device_id', help='Frida device id (default: USB device)')
@click.option('--spawn', is_flag=True, help='Spawn the app instead of attaching')
@click.option('-q', '--quiet', is_flag=True, help='Do not report every intercepted call')
@click.option('--skip', multiple=True, type=click.Choice(strategy_keys()), help='Strategy key to skip (repeatable)')
@click.option('--duration', type=int, help='Keep hooks alive for N seconds (default: until Ctrl+C)')
@click.pass_context
def disable(ctx, target, device_id, spawn, quiet, skip, duration):
    """
    Disable SSL pinning in a running (or spawned) app

    TARGET is a process name, bundle identifier or PID.

    Hooks stay active until Ctrl+C or --duration, then are removed.
    """
    try:
        config = BypassConfig(quiet=quiet, skip=set(skip))
        _run_disable(target, device_id, spawn, duration, config)

    except UnpinError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _run_disable(target: str, device_id: Optional[str], spawn: bool,
                 duration: Optional[int], config: BypassConfig):
    from unpin.bypass.pinning import PinningBypass
    from unpin.core.device_manager import connect_device
    from unpin.core.jobs import JobManager
    from unpin.hooking.frida_engine import create_session
    from unpin.hooking.frida_runtime import FridaRuntime

    frida_device = connect_device(device_id)

    console.print(f"\n[bold]Disabling SSL pinning:[/bold] {target}\n")
    engine = create_session(frida_device, target, spawn=spawn)
    runtime = FridaRuntime(engine, max_workers=config.max_workers, timeout=config.bridge_timeout)
    jobs = JobManager()

    try:
        runtime.load()
        report = PinningBypass(runtime, jobs, config).disable()
        _display_report_rich(report)

        if spawn:
            engine.resume()

        engine.run(duration=duration, on_stop=jobs.kill_all)

    finally:
        runtime.close()
        engine.detach()


def _display_report_rich(report: BypassReport):
    """Display bypass results using Rich formatting"""
    table = Table(title=f"Job {report.job.identifier} ({report.job.label})")
    table.add_column("Strategy", style="cyan", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Hooks", justify="right")
    table.add_column("Detail")

    for result in report.results:
        style = OUTCOME_STYLES[result.outcome]
        table.add_row(
            result.key,
            f"[{style}]{result.outcome.value}[/{style}]",
            str(len(result.hooks)),
            result.detail
        )

    console.print(table)

    counts = report.counts()
    summary = "\n".join(
        f"[cyan]{outcome.value.capitalize()}:[/cyan] {counts[outcome]}" for outcome in Outcome
    )
    summary += f"\n[cyan]Hooks installed:[/cyan] {report.job.hook_count}"
    border = "red" if report.failed else "green"
    console.print(Panel(summary, title="[bold]Bypass Summary[/bold]", border_style=border))


def main():
    """Main entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"[bold red]Unexpected error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
