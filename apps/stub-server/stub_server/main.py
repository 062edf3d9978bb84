"""CLI entrypoint for running a standalone stub server."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import typer

from .config import StubFile, load_stub_file
from .errors import StubFileError
from .logging_utils import configure_logging
from .output_config import get_log_format
from .server import ServerConfig, StubServer

app = typer.Typer(help="Serve canned HTTP responses from a stub file.")


def _load(stubs: Path) -> StubFile:
    try:
        return load_stub_file(stubs)
    except StubFileError as exc:
        raise typer.BadParameter(str(exc), param_hint="--stubs") from exc


def _summary(server: StubServer, stub_file: StubFile) -> list[str]:
    lines = [f"[stub-server] listening on {server.base_url}", "    stubs:"]
    if stub_file.stubs:
        lines.extend(f"      - {stub.describe()}" for stub in stub_file.stubs)
    else:
        lines.append("      (no stubs configured)")
    return lines


def _wait_for_interrupt(server: StubServer) -> None:
    threading.Event().wait()


@app.command()
def serve(
    stubs: Path = typer.Option(
        ...,
        exists=True,
        readable=True,
        dir_okay=False,
        help="YAML or JSON file listing the stubs to serve.",
    ),
    host: str = typer.Option("127.0.0.1", help="Bind host."),
    port: int = typer.Option(0, "--port", "-p", min=0, max=65535, help="Bind port, 0 picks a free one."),
    log_level: str = typer.Option("info", help="Log level (debug, info, warning, error)."),
    log_format: Optional[str] = typer.Option(
        None,
        help="Log format: console, plain or json. Defaults to $STUB_SERVER_LOG_FORMAT or console.",
    ),
) -> None:
    """Start a stub server and keep it running until interrupted."""

    try:
        logger = configure_logging(log_level, get_log_format(log_format), command="serve")
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc
    stub_file = _load(stubs)
    server = StubServer(ServerConfig(host=host, port=port))
    stub_file.register(server.registry)
    server.start()
    for line in _summary(server, stub_file):
        typer.echo(line)
    try:
        _wait_for_interrupt(server)
    except KeyboardInterrupt:
        logger.info("interrupt_received")
    finally:
        server.stop()


@app.command()
def check(
    stubs: Path = typer.Option(
        ...,
        exists=True,
        readable=True,
        dir_okay=False,
        help="YAML or JSON file listing the stubs to validate.",
    ),
) -> None:
    """Validate a stub file and list the stubs it defines."""

    stub_file = _load(stubs)
    for stub in stub_file.stubs:
        typer.echo(stub.describe())
    typer.secho(f"{len(stub_file.stubs)} stub(s) OK", fg=typer.colors.GREEN)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
