"""
Logging configuration for the Exif AI service.
"""

import logging
from typing import Any, Dict
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """Configure clean, simple logging output."""

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[RichHandler(
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
            show_level=False,
            markup=False
        )],
        force=True  # Override any existing configuration
    )

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("exiftool").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: str):
    """Get a standard logger instance."""
    return logging.getLogger(f"exif_ai.{name}")


class MetricsLogger:
    """Logger for tracking request metrics."""

    def __init__(self):
        self.logger = get_logger("metrics")
        self.metrics: Dict[str, Any] = {
            "requests": 0,
            "succeeded": 0,
            "failed": 0,
            "task_failures": 0,
            "fields_written": 0,
            "processing_time": 0.0,
        }

    def log_request_processed(self, source: str, fields_written: int, task_failures: int, processing_time: float) -> None:
        """Log a request that reached a response."""
        self.metrics["requests"] += 1
        self.metrics["succeeded"] += 1
        self.metrics["fields_written"] += fields_written
        self.metrics["task_failures"] += task_failures
        self.metrics["processing_time"] += processing_time

        # Individual requests only at DEBUG level to avoid spam
        self.logger.debug(
            f"Processed: {source} | Fields: {fields_written} | Task failures: {task_failures} | "
            f"Time: {processing_time:.3f}s | Total: {self.metrics['requests']} requests"
        )

    def log_request_failure(self, source: str, error: str) -> None:
        """Log a request that was rejected or failed."""
        self.metrics["requests"] += 1
        self.metrics["failed"] += 1

        self.logger.warning(f"Processing failed: {source} | Error: {error}")

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics."""
        metrics = self.metrics.copy()
        metrics["processing_time"] = round(metrics["processing_time"], 3)
        return metrics
