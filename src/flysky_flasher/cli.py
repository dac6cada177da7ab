"""
FlySky Flasher CLI

Command-line interface for flashing FlySky transmitter firmware.
"""

import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, DownloadColumn, TextColumn

from flysky_flasher import __version__
from flysky_flasher.errors import FirmwareFileError
from flysky_flasher.firmware import (
    FirmwareCandidate,
    FirmwareImage,
    discover_firmware,
    load_firmware_file,
)
from flysky_flasher.protocol.transport import BAUD_RATE, READ_TIMEOUT, list_serial_ports
from flysky_flasher.uploader import DEFAULT_MAX_RETRIES, plan_blocks
from flysky_flasher.core.results import OperationResult
from flysky_flasher.core.actions import (
    flash_firmware as core_flash_firmware,
    ping_device as core_ping_device,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("flysky_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="FlySky Flasher - firmware updater for FlySky transmitters")


@dataclass
class CliOptions:
    """Options shared by all commands."""
    trace: bool = False


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_result(result: OperationResult) -> None:
    """Print warnings and errors carried by an OperationResult."""
    for warning in result.warnings:
        print_warning(warning)
    for error in result.errors:
        print_error(error)


def confirm_write(force: bool, prompt: str) -> None:
    """Ask before writing to the transmitter unless ``force`` is set."""
    if force:
        return
    if not typer.confirm(prompt):
        raise typer.Abort()


def _trace(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.trace)


def choose_port(port: Optional[str]) -> str:
    """
    Resolve the serial port to use.

    An explicit port wins; a single detected port is used as-is;
    otherwise the user picks from a list.
    """
    if port:
        return port

    found = list_serial_ports()
    if not found:
        print_error("No serial ports found")
        raise typer.Exit(1)
    if len(found) == 1:
        return found[0].device

    table = Table(title="Serial Ports")
    table.add_column("#", style="bold")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    for index, info in enumerate(found):
        table.add_row(str(index), info.device, info.description or "-")
    console.print(table)

    choice = typer.prompt("Please select serial port", type=int)
    if not 0 <= choice < len(found):
        raise typer.BadParameter(f"No port with number {choice}")
    return found[choice].device


def _firmware_table(candidates: List[FirmwareCandidate]) -> Table:
    table = Table(title="Firmware Files")
    table.add_column("#", style="bold")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Name", style="magenta")
    table.add_column("Date", style="green")
    for index, candidate in enumerate(candidates):
        table.add_row(
            str(index),
            candidate.path.name,
            f"{candidate.size:,}",
            candidate.name or "-",
            candidate.build_date or "-",
        )
    return table


def choose_firmware(firmware: Optional[str], directory: str) -> FirmwareImage:
    """
    Resolve and load the firmware image to flash.

    Raises:
        FirmwareFileError: If the chosen file is not a valid image
    """
    if firmware:
        return load_firmware_file(firmware)

    candidates = discover_firmware(directory)
    if not candidates:
        raise FirmwareFileError(f"No firmware found in {Path(directory).resolve()}")
    if len(candidates) == 1:
        return load_firmware_file(candidates[0].path)

    console.print(_firmware_table(candidates))
    choice = typer.prompt("Please select firmware", type=int)
    if not 0 <= choice < len(candidates):
        raise typer.BadParameter(f"No firmware with number {choice}")
    return load_firmware_file(candidates[choice].path)


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log every frame and raw byte exchanged"
    ),
) -> None:
    """FlySky Flasher - firmware updater for FlySky transmitters."""
    if verbose:
        logger.setLevel(logging.DEBUG)
    ctx.obj = CliOptions(trace=verbose)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"flysky-flasher {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


@app.command("firmware")
def list_firmware(
    directory: str = typer.Argument(".", help="Directory to search for *.bin files"),
) -> None:
    """List firmware files in a directory."""
    print_header("Firmware Files")

    candidates = discover_firmware(directory)
    if not candidates:
        print_warning(f"No firmware found in {Path(directory).resolve()}")
        return

    console.print(_firmware_table(candidates))


@app.command()
def inspect(
    firmware: str = typer.Argument(..., help="Path to firmware file"),
) -> None:
    """Validate a firmware file and show what would be flashed."""
    print_header("Firmware Inspection")

    try:
        image = load_firmware_file(firmware)
    except FirmwareFileError as exc:
        print_error(str(exc))
        sys.exit(1)

    blocks = plan_blocks(image.size)
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("File", image.source or "-")
    table.add_row("Bootloader header", "stripped" if image.header_stripped else "absent")
    table.add_row("Image size", f"{image.size:,} bytes (0x{image.size:X})")
    table.add_row("Base address", f"0x{image.base_address:04X}")
    table.add_row("Name", image.name or "-")
    table.add_row("Build date", image.build_date or "-")
    table.add_row("Blocks", f"{len(blocks)} x 1024 bytes")
    table.add_row("SHA-256", image.sha256)
    console.print(table)
    print_success("Firmware looks valid")


@app.command()
def ping(
    ctx: typer.Context,
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    baudrate: int = typer.Option(BAUD_RATE, "--baud", help="Baud rate"),
    timeout: float = typer.Option(READ_TIMEOUT, "--timeout", help="Per-read timeout in seconds"),
) -> None:
    """Check that the transmitter bootloader answers."""
    print_header("Ping Bootloader")

    port = choose_port(port)
    result = core_ping_device(port, baudrate=baudrate, timeout=timeout, trace=_trace(ctx))
    print_result(result)
    if not result.ok:
        sys.exit(1)
    print_success(f"Bootloader on {port} answered: {result.metadata['ping_response']}")


@app.command()
def flash(
    ctx: typer.Context,
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port"),
    firmware: Optional[str] = typer.Option(None, "--firmware", "-f", help="Firmware file"),
    directory: str = typer.Option(".", "--dir", "-d", help="Where to look for *.bin files"),
    baudrate: int = typer.Option(BAUD_RATE, "--baud", help="Baud rate"),
    timeout: float = typer.Option(READ_TIMEOUT, "--timeout", help="Per-read timeout in seconds"),
    retries: int = typer.Option(
        DEFAULT_MAX_RETRIES, "--retries", min=0, help="Retries per 1024-byte block"
    ),
    attempts: int = typer.Option(
        1, "--attempts", min=1, help="Whole-upload attempts before giving up"
    ),
    no_restart: bool = typer.Option(False, "--no-restart", help="Do not reboot after upload"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate only, no write"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Flash a firmware image to the transmitter."""
    print_header("Flash Firmware")

    try:
        image = choose_firmware(firmware, directory)
    except FirmwareFileError as exc:
        print_error(str(exc))
        sys.exit(1)

    console.print(f"  Firmware:      {image.label}")
    console.print(f"  Image size:    {image.size:,} bytes")
    console.print(f"  Base address:  0x{image.base_address:04X}")

    port = choose_port(port)
    console.print(f"  Port:          {port}")
    console.print()

    if not dry_run:
        try:
            confirm_write(yes, f"Flash {image.label} to the transmitter on {port}?")
        except typer.Abort:
            print_warning("Flash cancelled")
            sys.exit(0)

    result: Optional[OperationResult] = None
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            print_warning(f"Attempt {attempt}/{attempts}")

        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            DownloadColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            console=console,
        ) as progress:
            task = progress.add_task("Writing firmware...", total=image.size)
            result = core_flash_firmware(
                port,
                image,
                baudrate=baudrate,
                timeout=timeout,
                max_retries=retries,
                restart=not no_restart,
                trace=_trace(ctx),
                dry_run=dry_run,
                progress_cb=lambda done, total: progress.update(task, completed=done),
            )

        print_result(result)
        if result.ok:
            break
        if _trace(ctx):
            console.print(result.to_summary(), markup=False, highlight=False)

    if result is None or not result.ok:
        sys.exit(1)

    if dry_run:
        print_success(
            f"Dry run complete: {result.metadata['blocks']} blocks planned, no data written"
        )
    else:
        print_success(f"Upload completed: {result.bytes_len:,} bytes")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
