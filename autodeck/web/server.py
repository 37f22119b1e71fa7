"""
Web server bootstrap for the autodeck API.
"""

from __future__ import annotations

import logging
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env so provider keys are available when the server is started directly
# (e.g. uvicorn autodeck.web.server:create_server_app).
load_dotenv()
load_dotenv(Path.cwd() / ".env")

import uvicorn
from loguru import logger

from ..config import get_autodeck_dir
from .api import create_app

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8430


class InterceptHandler(logging.Handler):
    """Route standard logging records into loguru sinks."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_file: Path | None = None) -> Path:
    """Send loguru output to stderr and a rotating server.log; intercept stdlib loggers."""
    log_file = log_file or get_autodeck_dir() / "server.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        sys.stderr,
        level="INFO",
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )
    logger.add(
        str(log_file),
        level="DEBUG",
        rotation="10 MB",
        retention="1 week",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "LiteLLM"):
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = [InterceptHandler()]
        logging_logger.propagate = False
    return log_file


def is_port_open(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, timeout: float = 0.4) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def create_server_app() -> object:
    setup_logging()
    logger.info("Starting autodeck API server...")
    return create_app()


def run_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    if is_port_open(host, port):
        raise RuntimeError(f"Port {port} on {host} is already in use.")
    uvicorn.run("autodeck.web.server:create_server_app", host=host, port=port, log_level="info", factory=True)
