import signal
import typer
from pathlib import Path
from typing import Optional

from convwatch.config.loader import load_config
from convwatch.config.models import AppConfig
from convwatch.domain.errors import ConvwatchError, DirectoryListError, TransportShutdownError
from convwatch.infrastructure.logging import setup_logging
from convwatch.infrastructure.event_bus import EventBus
from convwatch.infrastructure.file_scanner import FileScanner
from convwatch.infrastructure.ffmpeg import FFmpegAdapter
from convwatch.infrastructure.web_server import ProgressServer
from convwatch.pipeline.conversion import ConversionTask
from convwatch.pipeline.dispatcher import Dispatcher
from convwatch.pipeline.controller import LifecycleController

__version__ = "0.2.0"

app = typer.Typer(help="convwatch - watch a folder and convert new videos with ffmpeg")


def install_signal_handlers(controller: LifecycleController) -> None:
    """SIGINT/SIGTERM request a graceful shutdown instead of raising."""
    def _handler(signum, frame):
        controller.request_shutdown()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@app.command()
def watch(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    watch_dir: Optional[Path] = typer.Option(None, "--watch-dir", "-w", help="Directory to watch (overrides config)"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for converted files (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Progress server port (overrides config)"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Watch a directory and convert each new video file exactly once."""
    try:
        config = load_config(config_path) if config_path else AppConfig()
        # Apply CLI overrides
        if watch_dir is not None: config.watch.directory = watch_dir
        if output_dir is not None: config.conversion.output_dir = output_dir
        if port is not None: config.server.port = port
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True
        # Overrides bypass validation; re-check the combined config
        config = AppConfig.model_validate(config.model_dump())
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if not config.watch.directory.is_dir():
        typer.secho(f"Error: watch directory does not exist: {config.watch.directory}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(config.output_dir, debug=config.general.debug, log_path=log_path_value)
    logger.info(f"convwatch {__version__} started: watch={config.watch.directory}, output={config.output_dir}")
    logger.info(
        f"Config: codec={config.conversion.video_codec}, container={config.conversion.container}, "
        f"port={config.server.port}, extensions={len(config.watch.extensions)}, debug={config.general.debug}"
    )

    bus = EventBus()
    scanner = FileScanner(extensions=config.watch.extensions)
    engine = FFmpegAdapter(ffmpeg_path=config.conversion.ffmpeg_path)
    task = ConversionTask(engine, config.conversion, output_dir=config.output_dir)
    dispatcher = Dispatcher(task, bus, queue_size=config.watch.queue_size)
    controller = LifecycleController(config, scanner, dispatcher, bus)
    server = ProgressServer(
        controller.broker,
        port=config.server.port,
        host=config.server.host,
        shutdown_timeout=config.server.shutdown_timeout_s,
    )

    install_signal_handlers(controller)

    try:
        controller.run(transport=server)
    except DirectoryListError as exc:
        typer.secho(f"Fatal Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except TransportShutdownError as exc:
        typer.secho(f"Error stopping server: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except ConvwatchError as exc:
        logger.exception("Unexpected pipeline error")
        typer.secho(f"Fatal Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def version():
    """Print the convwatch version."""
    typer.echo(f"convwatch {__version__}")


if __name__ == "__main__":
    app()
