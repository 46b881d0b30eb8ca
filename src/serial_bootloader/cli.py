"""
Serial Bootloader CLI

Command-line interface for uploading hex-word firmware images and
watching device log output.
"""

import sys
import time
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from serial_bootloader.config import BootloaderConfig, DEFAULT_BAUDRATE
from serial_bootloader.core.parsing import (
    parse_int as _parse_int_core,
    parse_duration as _parse_duration_core,
    parse_baudrate as _parse_baudrate_core,
)
from serial_bootloader.core.results import OperationResult
from serial_bootloader.core.actions import (
    inspect_firmware as core_inspect_firmware,
    restart_device as core_restart_device,
    send_text as core_send_text,
)
from serial_bootloader.core.messages import MessageDirection, TerminalMessage
from serial_bootloader.core.session import BootloaderSession
from serial_bootloader.protocol.transport import TransportError
from serial_bootloader.protocol.upload import (
    STAGE_DESCRIPTIONS,
    UploadProgress,
    UploadStage,
    format_eta,
    format_speed,
)
from serial_bootloader.reassembler import Severity

logger = logging.getLogger("serial_bootloader")

console = Console()

app = typer.Typer(help="Serial bootloader host - firmware upload and device log terminal")

SEVERITY_STYLES = {
    Severity.DEFAULT: "",
    Severity.DEBUG: "dim",
    Severity.INFO: "cyan",
    Severity.WARN: "yellow",
    Severity.ERROR: "bold red",
}


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_terminal_message(entry: TerminalMessage) -> None:
    """Print one terminal entry, coloured by direction and severity."""
    if entry.direction == MessageDirection.RX:
        style = SEVERITY_STYLES.get(entry.severity, "")
    elif entry.direction == MessageDirection.TX:
        style = "green"
    else:
        style = "magenta"
    console.print(f"[dim]{entry.formatted_header}[/dim] ", end="")
    console.print(entry.content, style=style or None, markup=False, highlight=False)


def print_result(result: OperationResult) -> None:
    """Print warnings and errors from an OperationResult."""
    for warning in result.warnings:
        print_warning(warning)
    for error in result.errors:
        print_error(error)


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """CLI wrapper around core.parsing.parse_int."""
    try:
        return _parse_int_core(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_duration(value: Optional[str], label: str) -> Optional[float]:
    """CLI wrapper around core.parsing.parse_duration."""
    try:
        return _parse_duration_core(value, label)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_baudrate(value: str) -> int:
    """CLI wrapper around core.parsing.parse_baudrate."""
    try:
        return _parse_baudrate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_config(
    baud: str = str(DEFAULT_BAUDRATE),
    chunk_size: Optional[str] = None,
    quiet: Optional[str] = None,
    pulse: Optional[str] = None,
) -> BootloaderConfig:
    """Build a BootloaderConfig from raw CLI option strings."""
    try:
        return BootloaderConfig().with_overrides(
            baudrate=parse_baudrate(baud),
            chunk_size=parse_int(chunk_size, "chunk size"),
            quiet_interval=parse_duration(quiet, "quiet interval"),
            restart_pulse_time=parse_duration(pulse, "pulse duration"),
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


@app.command()
def inspect(
    firmware: str = typer.Argument(..., help="Path to hex-word firmware file"),
    chunk_size: Optional[str] = typer.Option(None, "--chunk-size", help="Payload chunk size (default 1024)"),
) -> None:
    """Parse a firmware file and show the frame that would be sent."""
    print_header("Firmware Inspection")

    config = build_config(chunk_size=chunk_size)
    result = core_inspect_firmware(firmware, chunk_size=config.chunk_size)
    if not result.ok:
        print_result(result)
        raise typer.Exit(1)

    table = Table(title=Path(firmware).name)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Payload Size", f"{result.payload_size:,} bytes")
    table.add_row("Words", f"{result.metadata['words']:,}")
    table.add_row("Chunks", f"{result.metadata['chunks']} x {config.chunk_size} bytes")
    table.add_row("Frame Size", f"{result.metadata['frame_bytes']:,} bytes")
    table.add_row("Magic", result.metadata["magic"])
    table.add_row("Size Field", result.metadata["size"])
    table.add_row("CRC32", result.crc_hex)
    table.add_row("SHA-256", result.sha256)

    console.print(table)


@app.command()
def upload(
    port: str = typer.Argument(..., help="Serial port (e.g. /dev/ttyUSB0, COM3)"),
    firmware: str = typer.Argument(..., help="Path to hex-word firmware file"),
    baud: str = typer.Option(str(DEFAULT_BAUDRATE), "--baud", "-b", help="Baud rate"),
    reset: bool = typer.Option(True, "--reset/--no-reset", help="Pulse RTS to reset the device first"),
    chunk_size: Optional[str] = typer.Option(None, "--chunk-size", help="Payload chunk size (default 1024)"),
    monitor_seconds: float = typer.Option(0.0, "--monitor", "-m", help="Keep showing device log for N seconds afterwards"),
) -> None:
    """Upload a firmware image to the bootloader."""
    print_header("Firmware Upload")

    config = build_config(baud=baud, chunk_size=chunk_size)
    if not Path(firmware).exists():
        print_error(f"Firmware file not found: {firmware}")
        raise typer.Exit(1)

    console.print(f"Port: {port} @ {config.baudrate} bps")
    console.print(f"Firmware: {firmware}")
    console.print(f"Reset before upload: {'yes' if reset else 'no'}")

    session = BootloaderSession(port, config)
    session.add_listener(print_terminal_message)
    try:
        session.connect()
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(1)

    try:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            TextColumn("{task.fields[speed]}"),
            TextColumn("{task.fields[eta]}"),
            console=console,
        ) as progress:
            task = progress.add_task("Connecting...", total=100, speed="", eta="")

            def on_stage(stage: UploadStage) -> None:
                progress.update(task, description=STAGE_DESCRIPTIONS[stage])

            def on_progress(p: UploadProgress) -> None:
                progress.update(
                    task,
                    completed=p.percent,
                    speed=format_speed(p.speed) if p.speed else "",
                    eta=format_eta(p.elapsed, p.remaining),
                )

            result = session.upload(
                firmware,
                reset_before_upload=reset,
                progress_cb=on_progress,
                stage_cb=on_stage,
            )

        if result.ok:
            table = Table(title="Upload Results")
            table.add_column("Property", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Port", port)
            table.add_row("Payload", f"{result.payload_size:,} bytes")
            table.add_row("Chunks", str(result.chunks))
            table.add_row("CRC32", result.crc_hex)
            table.add_row("Average Speed", format_speed(result.average_speed))
            console.print(table)
            print_result(result)
            print_success("Firmware upload complete!")
        else:
            print_error(
                f"Upload failed at stage '{result.stage or 'unknown'}' "
                f"({result.bytes_sent:,}/{result.payload_size:,} payload bytes sent)"
            )
            print_result(result)

        if monitor_seconds > 0 and session.is_connected:
            console.print(f"[dim]Monitoring device output for {monitor_seconds:.1f}s...[/dim]")
            _wait_connected(session, monitor_seconds)
            session.reassembler.flush()
    finally:
        session.disconnect()

    if not result.ok:
        raise typer.Exit(1)


@app.command()
def monitor(
    port: str = typer.Argument(..., help="Serial port (e.g. /dev/ttyUSB0, COM3)"),
    baud: str = typer.Option(str(DEFAULT_BAUDRATE), "--baud", "-b", help="Baud rate"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Stop after N seconds (default: until Ctrl+C)"),
    quiet: Optional[str] = typer.Option(None, "--quiet", help="Flush unterminated output after this long (e.g. 10ms)"),
    send: Optional[List[str]] = typer.Option(None, "--send", "-s", help="Line to send after connecting (repeatable)"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Send lines typed on stdin"),
) -> None:
    """Show device log output, classified by severity."""
    print_header("Device Monitor")

    config = build_config(baud=baud, quiet=quiet)
    session = BootloaderSession(port, config)
    session.add_listener(print_terminal_message)
    try:
        session.connect()
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(1)

    try:
        for line in send or []:
            session.send_line(line)

        if interactive:
            console.print("[dim]Type lines to send; Ctrl+D to quit.[/dim]")
            for line in sys.stdin:
                if not session.is_connected:
                    break
                session.send_line(line.rstrip("\r\n"))
        else:
            _wait_connected(session, duration)
    except KeyboardInterrupt:
        pass
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        session.reassembler.flush()
        session.disconnect()


@app.command()
def restart(
    port: str = typer.Argument(..., help="Serial port (e.g. /dev/ttyUSB0, COM3)"),
    baud: str = typer.Option(str(DEFAULT_BAUDRATE), "--baud", "-b", help="Baud rate"),
    pulse: Optional[str] = typer.Option(None, "--pulse", help="DTR pulse length (default 100ms)"),
) -> None:
    """Restart the device program with a DTR pulse."""
    config = build_config(baud=baud, pulse=pulse)
    result = core_restart_device(port, config)
    if not result.ok:
        print_result(result)
        raise typer.Exit(1)
    print_success(f"Restart pulse sent on {port} ({config.restart_pulse_time * 1000:.0f} ms)")


@app.command()
def send(
    port: str = typer.Argument(..., help="Serial port (e.g. /dev/ttyUSB0, COM3)"),
    text: str = typer.Argument(..., help="Text line to send (newline is appended)"),
    baud: str = typer.Option(str(DEFAULT_BAUDRATE), "--baud", "-b", help="Baud rate"),
) -> None:
    """Send one line of text to the device."""
    config = build_config(baud=baud)
    result = core_send_text(port, text, config)
    if not result.ok:
        print_result(result)
        raise typer.Exit(1)
    print_success(f"Sent {result.bytes_sent} bytes to {port}")


def _wait_connected(session: BootloaderSession, duration: Optional[float]) -> None:
    """Sleep until duration elapses or the connection drops."""
    deadline = None if duration is None else time.monotonic() + duration
    while session.is_connected:
        if deadline is not None and time.monotonic() >= deadline:
            break
        time.sleep(0.05)


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
