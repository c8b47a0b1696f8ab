"""Runtime configuration for poolmon.

Configuration comes from an optional YAML file and is then overridden by
command-line options. All fields carry working defaults so poolmon can run
with no configuration at all against a stock director install.

Author: Poolmon Team
Version: 1.0.0
"""

import os
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Optional

import yaml

from poolmon.errors import ConfigError

DEFAULT_PORTS = [110, 143]
DEFAULT_SOCKET = "/var/run/dovecot/director-admin"
DEFAULT_PID_FILE = "/var/run/poolmon.pid"


@dataclass
class PoolmonConfig:
    """Configuration for the poolmon daemon."""
    ports: List[int] = field(default_factory=lambda: list(DEFAULT_PORTS))  # Plain ports to check
    ssl_ports: List[int] = field(default_factory=list)  # TLS ports, checked after plain ports
    timeout: float = 5.0  # Per-port connect and banner timeout in seconds
    interval: float = 30.0  # Seconds between scan cycles

    # Director
    socket: str = DEFAULT_SOCKET  # Director admin socket path
    director_timeout: float = 10.0  # Read timeout for director replies

    # Weights
    weight_file: Optional[str] = None  # Override weights, (ip|hostname):weight per line
    watch_weights: bool = False  # Reload weight file when it changes on disk

    # Process
    pid_file: str = DEFAULT_PID_FILE
    log_file: Optional[str] = None  # None logs to stderr; required when detaching
    foreground: bool = False
    debug: bool = False

    # Metrics
    metrics_host: str = "127.0.0.1"
    metrics_port: Optional[int] = None  # None disables the exporter

    def validate(self) -> "PoolmonConfig":
        """Check field values.

        Returns:
            The config itself, for chaining

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.ports and not self.ssl_ports:
            raise ConfigError("At least one port must be configured")
        for port in list(self.ports) + list(self.ssl_ports):
            if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
                raise ConfigError(f"Invalid port: {port!r}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.interval <= 0:
            raise ConfigError(f"interval must be positive, got {self.interval}")
        if self.director_timeout <= 0:
            raise ConfigError(f"director_timeout must be positive, got {self.director_timeout}")
        if self.metrics_port is not None and not 0 <= self.metrics_port < 65536:
            raise ConfigError(f"Invalid metrics_port: {self.metrics_port!r}")
        return self

    def check_daemon_logging(self) -> None:
        """Detaching closes stderr, so a daemon must log to a file.

        Raises:
            ConfigError: If not running in the foreground and no log_file is set
        """
        if not self.foreground and not self.log_file:
            raise ConfigError("log_file is required unless running in the foreground")

    @property
    def scan_deadline(self) -> float:
        """Upper bound for one host scan, after which the scan counts as lost."""
        port_count = len(self.ports) + len(self.ssl_ports)
        return self.timeout * 2 * port_count + self.timeout

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolmonConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = dict(data)
        for key in ("ports", "ssl_ports"):
            if key in values and not isinstance(values[key], list):
                values[key] = [values[key]]
        try:
            return cls(**values).validate()
        except TypeError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_file(cls, path: str) -> "PoolmonConfig":
        """Load a YAML configuration file.

        Args:
            path: Path to the YAML file

        Returns:
            Validated configuration

        Raises:
            ConfigError: If the file is missing, unparsable or invalid
        """
        if not os.path.exists(path):
            raise ConfigError(f"Config file '{path}' not found")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file '{path}' must contain a mapping")
        return cls.from_dict(data)

    def merged(self, **overrides: Any) -> "PoolmonConfig":
        """Return a copy with every non-None override applied."""
        values = asdict(self)
        for key, value in overrides.items():
            if value is None:
                continue
            if isinstance(value, tuple):
                if not value:
                    continue
                value = list(value)
            values[key] = value
        return PoolmonConfig.from_dict(values)
