"""Logging utilities for CytoTraj.

Provides stage loggers (console plus optional file) and structured run
records (JSON lines, YAML documents).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np
import yaml

PathLike = Union[str, Path]

STAGE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_stage_logger(
    name: str,
    verbose: bool = False,
    log_dir: Optional[PathLike] = None,
    log_filename: Optional[str] = None,
) -> logging.Logger:
    """Configure a console logger for a stage runner.

    Parameters
    ----------
    name : str
        Logger name (e.g. "cytotraj.clustering").
    verbose : bool
        Log at DEBUG instead of INFO.
    log_dir : PathLike, optional
        If given, also write to ``log_dir / log_filename``.
    log_filename : str, optional
        Log file name. Defaults to ``"<last name component>.log"``.

    Returns
    -------
    logging.Logger
        Configured logger with handlers replaced.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(STAGE_LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        filename = log_filename or f"{name.split('.')[-1]}.log"
        file_handler = logging.FileHandler(log_dir / filename)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)
        logger.info("Log file: %s", log_dir / filename)

    return logger


def _to_builtin(value: Any) -> Any:
    """Convert numpy scalars/arrays and paths into plain Python values."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Path):
        return str(value)
    return value


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append ``record`` as one JSON line to ``log_path``."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(_to_builtin(record), default=str))
        handle.write("\n")


def log_yaml(
    log_path: Optional[PathLike],
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append ``record`` as a YAML document.

    Parameters
    ----------
    log_path : PathLike, optional
        Destination file. Ignored when ``logger`` is given.
    record : dict
        Record to serialize.
    logger : logging.Logger, optional
        Emit the document through this logger instead of a file.
    """
    yaml_text = yaml.safe_dump(_to_builtin(record), sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return
    if log_path is None:
        raise ValueError("log_yaml needs either log_path or logger")

    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")
