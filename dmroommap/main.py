"""
dmroommap - Matrix direct-message room index
Entry point and orchestration.

Startup sequence:
  1. Load config.yaml
  2. Configure logging
  3. Build the DM room map registry and event bus
  4. Start the Matrix task (creates and starts the shared map)
  5. Start the debug web API (if enabled)
  6. Await shutdown signals
"""

import asyncio
import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Optional

import yaml

from dmroommap.core.registry import DMRoomMapRegistry, shared_registry
from dmroommap.infra.event_bus import EventBus
from dmroommap.infra.paths import CONFIG_FILE, LOG_DIR, LOG_FILE
from dmroommap.interfaces.matrix_thread import MatrixConfig, MatrixThread
from dmroommap.interfaces.web_interface import WebInterface


# ---------------------------------------------------------------------------
# Configuration loading
# ---------------------------------------------------------------------------

def load_config(path: Path = CONFIG_FILE) -> dict:
    if not path.exists():
        print(f"ERROR: {path} not found. Copy config.yaml.example and fill in your settings.")
        sys.exit(1)
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def build_matrix_config(cfg: dict) -> Optional[MatrixConfig]:
    """Return a MatrixConfig, or None when the matrix section cannot be used."""
    raw = cfg.get("matrix") or {}
    if not (raw.get("homeserver") and raw.get("user_id")
            and (raw.get("access_token") or raw.get("password"))):
        return None
    return MatrixConfig(
        homeserver=raw["homeserver"],
        user_id=raw["user_id"],
        access_token=raw.get("access_token", "") or "",
        device_id=raw.get("device_id", "") or "",
        password=raw.get("password", "") or "",
        device_name=raw.get("device_name", "dmroommap"),
    )


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(cfg: dict) -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    level_name = (cfg.get("logging") or {}).get("level", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)-20s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    console.setLevel(level)

    fh = logging.handlers.TimedRotatingFileHandler(
        LOG_FILE,
        when="midnight",
        backupCount=14,
        encoding="utf-8",
    )
    fh.setFormatter(fmt)
    fh.setLevel(logging.DEBUG)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(console)
    root.addHandler(fh)


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

class ShutdownCoordinator:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def request_shutdown(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def build_components(cfg: dict, matrix_cfg: MatrixConfig,
                     registry: DMRoomMapRegistry = shared_registry,
                     ) -> tuple[MatrixThread, Optional[WebInterface]]:
    """Wire the Matrix thread and optional debug API around one registry and bus."""
    event_bus = EventBus()
    matrix = MatrixThread(matrix_cfg, registry, event_bus)

    web_cfg: dict = cfg.get("web") or {"enabled": False}
    web_iface: Optional[WebInterface] = None
    if web_cfg.get("enabled", False):
        web_iface = WebInterface(
            host=web_cfg.get("host", "127.0.0.1"),
            port=web_cfg.get("port", 8080),
            registry=registry,
            event_bus=event_bus,
        )
    return matrix, web_iface


async def main() -> None:
    cfg = load_config()
    setup_logging(cfg)
    logger = logging.getLogger("main")
    logger.info("dmroommap starting up")

    matrix_cfg = build_matrix_config(cfg)
    if matrix_cfg is None:
        logger.error("Matrix is not configured (homeserver, user_id and a token "
                     "or password are required) - nothing to do. Exiting.")
        sys.exit(1)

    matrix, web_iface = build_components(cfg, matrix_cfg)

    shutdown = ShutdownCoordinator()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.request_shutdown)

    tasks = [asyncio.create_task(matrix.run(), name="matrix")]
    if web_iface:
        tasks.append(asyncio.create_task(web_iface.run(), name="web"))
    logger.info("All components started.")

    await shutdown.wait()
    logger.info("Shutdown requested - stopping components gracefully")

    matrix.stop()
    for task in tasks:
        if not task.done():
            task.cancel()
    try:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=10.0)
    except asyncio.TimeoutError:
        logger.warning("Some tasks did not stop within 10 s — forcing exit")

    logger.info("dmroommap shutdown complete")


def run() -> None:
    """Entry point for the `dmroommap` console script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
