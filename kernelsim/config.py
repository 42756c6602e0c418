"""Configuration files, loggers and command-line arguments."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

_LOG_FORMAT = "[%(levelname)s] %(asctime)s %(name)s/(%(process)d:%(thread)d): %(message)s"
_DATE_FORMAT = "%H:%M:%S"


@dataclass
class Config:
    """Key/value settings read from a ``KEY=VALUE`` file."""

    values: dict[str, str] = field(default_factory=dict)

    def text(self, key: str) -> str:
        try:
            return self.values[key]
        except KeyError:
            raise KeyError(f"missing configuration key {key!r}") from None

    def integer(self, key: str) -> int:
        value = self.text(key)
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"configuration key {key!r} is not an integer: {value!r}") from None

    def array(self, key: str) -> list[str]:
        """Parse a ``[a, b, c]`` value into its trimmed items."""
        value = self.text(key).strip()
        if not (value.startswith("[") and value.endswith("]")):
            raise ValueError(f"configuration key {key!r} is not an array: {value!r}")
        inner = value[1:-1].strip()
        if not inner:
            return []
        return [item.strip() for item in inner.split(",")]


def parse_config(text: str) -> Config:
    """Parse configuration text; blank lines and ``#`` comments are skipped."""
    values = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        values[key.strip()] = value.strip()
    return Config(values)


def load_config(path: str | Path) -> Config:
    """Read and parse a configuration file."""
    return parse_config(Path(path).read_text())


def create_logger(
    file_name: str | Path, module_name: str, to_console: bool, level: int | str
) -> logging.Logger:
    """Create a logger writing to ``file_name`` and optionally to stdout."""
    logger = logging.Logger(module_name, level)
    logger.propagate = False
    formatter = logging.Formatter(_LOG_FORMAT, _DATE_FORMAT)
    file_handler = logging.FileHandler(file_name)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    if to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        logger.addHandler(console)
    return logger


def config_path_from_args(argv: Sequence[str]) -> str:
    """Return the configuration path, the first command-line argument."""
    if not argv:
        raise ValueError("missing input parameters: configuration file path")
    return argv[0]