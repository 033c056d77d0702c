"""Utility functions for the RNA-seq enrichment workflows."""

import logging
from pathlib import Path
from typing import Any

import numpy as np

# Libraries that flood the log at DEBUG level
NOISY_LOGGERS = ('numba', 'matplotlib', 'PIL', 'urllib3', 'gseapy')


def setup_logging(log_dir=None, level=logging.INFO):
    """Set up logging configuration.

    Args:
        log_dir: Directory to store log files
        level: Logging level

    Returns:
        The package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / 'pipeline.log'

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(file_handler)
        # Write straight away so the log file exists even for empty runs
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    logger = logging.getLogger('rnaseq_enrichment')
    logger.setLevel(level)
    return logger


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def clean_for_json(item: Any) -> Any:
    """Convert numpy scalars and arrays nested in a result to plain Python types."""
    if isinstance(item, dict):
        return {str(k): clean_for_json(v) for k, v in item.items()}
    elif isinstance(item, (list, tuple, set)):
        return [clean_for_json(i) for i in item]
    elif isinstance(item, np.integer):
        return int(item)
    elif isinstance(item, np.floating):
        return float(item)
    elif isinstance(item, np.ndarray):
        return clean_for_json(item.tolist())
    elif isinstance(item, np.bool_):
        return bool(item)
    elif isinstance(item, Path):
        return str(item)
    return item
