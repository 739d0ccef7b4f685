"""I/O utilities for atomic writes, JSON/CSV output and logging setup."""

import csv
import json
import logging
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from shutil import move
from typing import IO, Any


def setup_logging(log_dir: Path | None = None, log_level: str = "INFO") -> logging.Logger:
    """Set up logging configuration for WebpLab.

    Args:
        log_dir: Directory for a timestamped log file (console only if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The package logger
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        handlers.append(logging.FileHandler(log_dir / f"webplab_{timestamp}.log"))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    return logging.getLogger("webplab")


@contextmanager
def atomic_write(target_path: Path, mode: str = "w") -> Iterator[IO[Any]]:
    """Context manager for atomic file writes using temporary files.

    The data lands in a temporary file beside the target and is moved into
    place only when the block exits cleanly.

    Example:
        with atomic_write(Path("out.webp"), "wb") as f:
            f.write(data)
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    encoding = None if "b" in mode else "utf-8"
    with tempfile.NamedTemporaryFile(
        mode=mode,
        dir=target_path.parent,
        delete=False,
        suffix=f".tmp_{target_path.name}",
        encoding=encoding,
    ) as temp_file:
        try:
            yield temp_file
            temp_file.flush()
            move(temp_file.name, target_path)
        except Exception:
            Path(temp_file.name).unlink(missing_ok=True)
            raise


def save_json(data: dict[str, Any], json_path: Path) -> None:
    """Atomically save data as a JSON file.

    Non-finite floats (an infinite PSNR) are written as strings.
    """
    with atomic_write(json_path) as f:
        json.dump(json_safe(data), f, indent=2, ensure_ascii=False)


def load_json(json_path: Path) -> dict[str, Any]:
    """Load JSON data from file."""
    with open(json_path, encoding="utf-8") as f:
        return json.load(f)


def write_csv_rows(csv_path: Path, rows: list[dict[str, Any]], fieldnames: list[str]) -> None:
    """Atomically write ``rows`` (with header) to ``csv_path``."""
    with atomic_write(csv_path) as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def json_safe(value: Any) -> Any:
    """Recursively convert ``value`` into something json.dump accepts."""
    if isinstance(value, float) and value != value:
        return "nan"
    if isinstance(value, float) and value in (float("inf"), float("-inf")):
        return "inf" if value > 0 else "-inf"
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value
