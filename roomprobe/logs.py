# roomprobe/logs.py
from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional

_FORMATS = {
    "simple": "%(levelname)s: %(message)s",
    "detailed": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    "debug": "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d: %(message)s",
}


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_style: str = "detailed",
) -> logging.Logger:
    """
    Configure the root logger for an entry point (CLI, streamlit app, tests).

    level:        DEBUG | INFO | WARNING | ERROR | CRITICAL
    log_file:     optional extra file handler
    format_style: "simple" | "detailed" | "debug"
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    formatter = logging.Formatter(_FORMATS.get(format_style, _FORMATS["detailed"]), datefmt="%H:%M:%S")

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file is not None:
        fh = logging.FileHandler(log_file)
        fh.setLevel(numeric_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
