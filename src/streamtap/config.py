"""Configuration management for streamtap.

Settings come from the [capture] table of a streamtap.toml found in the
current or a parent directory. Command line options override file values.
"""

import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from streamtap.errors import ConfigurationError

CONFIG_FILENAME = "streamtap.toml"


@dataclass(frozen=True)
class CaptureConfig:
    """Pipeline settings."""

    endpoint: str = "http://127.0.0.1:9222"
    bootstrap_url: str = "https://www.netflix.com"
    workers: int = 8
    queue_size: int = 64
    retry_interval: float = 5.0
    max_attempts: Optional[int] = None
    connect_deadline: Optional[float] = None
    connect_timeout: float = 5.0
    request_timeout: float = 30.0
    chunk_size: int = 65536
    output_dir: str = "."
    prefix: str = "DL-"
    drain_on_exit: bool = True

    def __post_init__(self):
        for name in ("endpoint", "bootstrap_url", "output_dir", "prefix"):
            if not isinstance(getattr(self, name), str):
                raise ConfigurationError(f"{name} must be a string")
        for name in ("workers", "queue_size", "chunk_size"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        for name in ("retry_interval", "connect_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not self.endpoint.startswith(("http://", "https://")):
            raise ConfigurationError(f"endpoint must be an http(s) URL: {self.endpoint}")
        if not self.prefix or "/" in self.prefix:
            raise ConfigurationError(f"Invalid file prefix: {self.prefix!r}")


def _find_config_file() -> Optional[Path]:
    """Find streamtap.toml in current or parent directories."""
    current = Path.cwd()

    for parent in [current] + list(current.parents):
        config_file = parent / CONFIG_FILENAME
        if config_file.exists():
            return config_file

    return None


def _load_config(path: Optional[Path] = None) -> dict:
    """Load raw configuration from file."""
    if path is None:
        path = _find_config_file()

    if path is None or not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid {path}: {e}") from e


def load_config(path: Optional[Path] = None, **overrides: Any) -> CaptureConfig:
    """Build the pipeline configuration.

    Args:
        path: Explicit config file. Searched for when omitted.
        **overrides: Values that win over the file. None values are ignored.

    Returns:
        Validated CaptureConfig.

    Raises:
        ConfigurationError: If the file is invalid or has unknown keys.
    """
    if path is not None and not Path(path).exists():
        raise ConfigurationError(f"Config file not found: {path}")

    section = _load_config(Path(path) if path else None).get("capture", {})
    if not isinstance(section, dict):
        raise ConfigurationError("[capture] must be a table")

    known = {f.name for f in fields(CaptureConfig)}
    unknown = set(section) - known
    if unknown:
        raise ConfigurationError(f"Unknown capture settings: {', '.join(sorted(unknown))}")

    values = {**section, **{k: v for k, v in overrides.items() if v is not None}}
    try:
        return replace(CaptureConfig(), **values)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e
