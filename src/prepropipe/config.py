"""
prepropipe.config
服务器与客户端共用的配置：默认值、TOML 加载与命令行覆盖。
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from typing import Optional

from .log import get_logger
from .protocol import BYTE_ORDERS, PIPE_BUFFER_SIZE

log = get_logger("config")

DEFAULT_PATH = "./KPrepropipe"


@dataclass(frozen=True, slots=True)
class PipeConfig:
    path: str = DEFAULT_PATH
    timeout: float = 5.0          # send/recv timeout per endpoint, seconds
    backlog: int = 100
    chunk_size: int = PIPE_BUFFER_SIZE
    accept_interval: float = 0.25
    dial_interval: float = 0.001
    byte_order: str = "native"
    check_response: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("socket path must not be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.backlog <= 0:
            raise ValueError("backlog must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.accept_interval <= 0:
            raise ValueError("accept_interval must be positive")
        if self.dial_interval < 0:
            raise ValueError("dial_interval must not be negative")
        if self.byte_order not in BYTE_ORDERS:
            raise ValueError(f"byte_order must be one of {sorted(BYTE_ORDERS)}")

    def with_overrides(self, **overrides) -> "PipeConfig":
        """Apply command line values, skipping the ones left unset (None)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def load(cls, filename: str) -> "PipeConfig":
        """
        Loads the [pipe] table from a TOML file.
        If the file doesn't exist, returns the default config.
        """
        if not os.path.exists(filename):
            log.warning("{} not found, using defaults", filename)
            return cls()

        try:
            with open(filename, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ValueError(f"cannot read config {filename}: {e}") from e

        section = data.get("pipe", {})
        if not isinstance(section, dict):
            raise ValueError(f"{filename}: [pipe] must be a table")
        # Unknown keys are ignored
        valid_keys = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in section.items() if k in valid_keys})


def config_from_args(args, **extra) -> PipeConfig:
    """Defaults <- optional --config file <- command line flags."""
    base = PipeConfig.load(args.config) if args.config else PipeConfig()
    return base.with_overrides(
        path=args.path,
        timeout=args.timeout,
        byte_order=args.byte_order,
        log_level=args.log_level,
        log_file=args.log_file,
        **extra,
    )
