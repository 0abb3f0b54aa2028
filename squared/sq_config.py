"""
Runner configuration: scheduling cadence, comment dialect, module loading options.
"""
import dataclasses
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import yaml

DEBUG_ENV = "SQUARED_DEBUG"
CONFIG_ENV = "SQUARED_CONFIG"

COMMENT_PREFIXES = ("--", "#")


@dataclass
class RunnerConfig:
    yield_interval: int = 1000        # statements between cooperative yields
    loop_yield_interval: int = 50     # loop iterations between yields
    comment_prefix: str = "--"
    source_dir: Optional[str] = None  # base for relative module locators; CWD when unset
    http_timeout: float = 5.0
    http_retries: int = 2
    debug: bool = field(default_factory=lambda: bool(os.environ.get(DEBUG_ENV)))

    def __post_init__(self):
        if self.comment_prefix not in COMMENT_PREFIXES:
            raise ValueError(f"comment_prefix must be one of {COMMENT_PREFIXES}, got {self.comment_prefix!r}")
        if self.yield_interval < 0 or self.loop_yield_interval < 0:
            raise ValueError("yield intervals must be non-negative")
        if self.http_retries < 0:
            raise ValueError("http_retries must be non-negative")

    @property
    def base_dir(self) -> str:
        return self.source_dir or os.getcwd()

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> 'RunnerConfig':
        data = dict(data or {})
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_file(cls, path: str) -> 'RunnerConfig':
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is not None and not isinstance(data, Mapping):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_env(cls) -> 'RunnerConfig':
        path = os.environ.get(CONFIG_ENV)
        cfg = cls.from_file(path) if path else cls()
        if os.environ.get(DEBUG_ENV):
            cfg.debug = True
        return cfg


def configure_logging(debug: bool):
    """Attaches a stderr handler to the package logger when debugging is on."""
    logger = logging.getLogger("squared")
    if not debug:
        return
    if not any(getattr(h, "_squared_debug", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[DBG] %(name)s: %(message)s"))
        handler._squared_debug = True
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
