"""Command line interface for streamtap.

Commands:
  - run: Capture media segments from a debugged Chrome page and download them
  - run-chrome: Launch Chrome with remote debugging enabled
"""

import logging
import shutil
import signal
import socket
import subprocess
import time
from pathlib import Path
from typing import Optional

import typer

from streamtap.config import load_config
from streamtap.errors import ConfigurationError, ConnectCancelledError, StreamtapError
from streamtap.pipeline import CapturePipeline

logger = logging.getLogger(__name__)

app = typer.Typer(name="streamtap", help="Capture and download streaming media segments via Chrome DevTools.")

CHROME_EXECUTABLES = ["google-chrome-stable", "google-chrome", "chromium-browser", "chromium"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command("run")
def run(
    endpoint: Optional[str] = typer.Option(None, help="DevTools HTTP endpoint"),
    workers: Optional[int] = typer.Option(None, help="Concurrent downloads"),
    queue_size: Optional[int] = typer.Option(None, help="Downloads waiting for a worker"),
    output_dir: Optional[str] = typer.Option(None, help="Directory for downloaded files"),
    bootstrap_url: Optional[str] = typer.Option(None, help="Page opened after connecting ('' to skip)"),
    max_attempts: Optional[int] = typer.Option(None, help="Give up connecting after this many attempts"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to streamtap.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Capture segment responses and download the underlying media."""
    _configure_logging(verbose)

    try:
        settings = load_config(
            config,
            endpoint=endpoint,
            workers=workers,
            queue_size=queue_size,
            output_dir=output_dir,
            bootstrap_url=bootstrap_url,
            max_attempts=max_attempts,
        )
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(code=2)

    pipeline = CapturePipeline(settings)

    def _stop(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, stopping")
        pipeline.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        pipeline.run()
    except ConnectCancelledError:
        logger.info("Stopped before a session was established")
    except StreamtapError as e:
        logger.error(f"Fatal: {e}")
        raise typer.Exit(code=1)


def _is_port_in_use(port: int) -> bool:
    """Check if port is already bound."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(("localhost", port)) == 0


@app.command("run-chrome")
def run_chrome(
    port: int = typer.Option(9222, help="Debugging port"),
    detach: bool = typer.Option(True, help="Run Chrome in background"),
) -> None:
    """Launch Chrome with debugging enabled for streamtap."""
    _configure_logging(False)

    if _is_port_in_use(port):
        logger.error(f"Port {port} already in use. Kill existing: pkill -f 'remote-debugging-port={port}'")
        raise typer.Exit(code=1)

    chrome_exe = next((name for name in CHROME_EXECUTABLES if shutil.which(name)), None)
    if not chrome_exe:
        logger.error("Chrome not found. Install google-chrome-stable or chromium")
        raise typer.Exit(code=1)

    # Clean temp profile for debugging
    profile = Path("/tmp/streamtap-chrome-debug")
    profile.mkdir(parents=True, exist_ok=True)

    cmd = [chrome_exe, f"--remote-debugging-port={port}", "--remote-allow-origins=*", f"--user-data-dir={profile}"]

    if detach:
        subprocess.Popen(cmd, start_new_session=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

        # Wait briefly for Chrome to start the debug port
        time.sleep(1.0)
        if not _is_port_in_use(port):
            logger.warning(f"Launched {chrome_exe} but port {port} not responding yet")
            return
        logger.info(f"Launched {chrome_exe} on port {port}. Next step: streamtap run")
    else:
        result = subprocess.run(cmd)
        if result.returncode != 0:
            logger.error(f"Chrome exited with code {result.returncode}")
            raise typer.Exit(code=result.returncode)


def main():
    """Entry point for the streamtap command."""
    app()
