# pingstats/logs.py
import sys
import time
from datetime import datetime
from typing import Optional

from loguru import logger

from pingstats.schemas import EchoResult

CONSOLE_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <7}</level> | {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Console sink at `level`; optional file sink that keeps everything from DEBUG up."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT)
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5, enqueue=True)


def wall_time(monotonic_ts: float) -> datetime:
    # monotonic timestamps only mean something relative to "now"
    return datetime.fromtimestamp(time.time() - (time.monotonic() - monotonic_ts))


def format_result_line(result: EchoResult) -> str:
    stamp = wall_time(result.sent_time).strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"[{stamp}] Error {result.error or 'none':>11} | Status {result.status:>12}"
        f" | Responder {str(result.responder):>15} | Latency {result.latency_ms:7.2f} ms"
        f" | SysLatency {result.system_latency_ms:4d} ms"
    )
