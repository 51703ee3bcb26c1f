"""Logging utilities for doublet-refinery.

Provides timestamped run logs and YAML records of run summaries.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Tuple, Union

import numpy as np
import pandas as pd
import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Add a timestamp to a log file name.

    Example: doublets.log -> doublets_20251209_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing to a (timestamped) file.

    The logger keeps propagating to its parents, so console handlers set up
    by the caller still receive the records.

    Parameters
    ----------
    name : str
        Logger name
    log_path : PathLike
        Base path for log file
    level : int
        Logging level (default: INFO)
    timestamped : bool
        If True, add timestamp to filename to preserve previous logs.
        If False, overwrite existing log file.

    Returns
    -------
    Tuple[logging.Logger, Path]
        (logger, actual_log_path)
    """
    log_path = Path(log_path)
    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)
    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger, actual_log_path


def to_builtin(value: Any) -> Any:
    """Convert numpy / pandas values into YAML-safe builtins."""
    if isinstance(value, dict):
        return {str(k): to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_builtin(v) for v in value]
    if isinstance(value, pd.DataFrame):
        return {col: to_builtin(value[col].tolist()) for col in value.columns}
    if isinstance(value, np.ndarray):
        return to_builtin(value.tolist())
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    return value


def log_yaml(
    log_path: PathLike,
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append a YAML document to log_path.

    Parameters
    ----------
    log_path : PathLike
        Path to log file
    record : dict
        Dictionary to serialize as YAML (numpy values allowed)
    logger : logging.Logger, optional
        If provided, log to this logger instead of file.
    """
    yaml_text = yaml.safe_dump(to_builtin(record), sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return

    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")
