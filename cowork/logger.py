"""Logging configuration for Cowork."""

import logging
import sys
from pathlib import Path


def setup_logging(log_file: str = "log/cowork.log", level: int = logging.INFO, quiet: bool = False) -> None:
    """Setup logging to file and optionally stderr."""
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [
        logging.FileHandler(log_path, mode="a", encoding="utf-8"),
    ]

    # Keep stderr clean when the CLI is rendering a turn
    if not quiet:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )

    # Suppress noisy third-party logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger("cowork").setLevel(level)

    logging.info("=" * 60)
    logging.info(f"Cowork logging started. Writing to {log_path.absolute()}")
    logging.info("=" * 60)
