"""Weight Registry.

Maps backend addresses to the weight a host is restored to when it comes back
into service. Entries come from a weight file of ``(ip|hostname):weight``
lines; hostnames are expanded to every address they resolve to. Addresses
without an entry fall back to the default weight.

The mapping is rebuilt from scratch on every load and swapped in as a whole,
so a lookup racing with a reload sees either the old or the new table.

Author: Poolmon Team
Version: 1.0.0
"""

import logging
import re
import socket
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from poolmon.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 100

_IP_ENTRY = re.compile(r"^(\d{1,3}(?:\.\d{1,3}){3}):(\d+)$")
_HOST_ENTRY = re.compile(r"^([\w.\-]+):(\d+)$")

Resolver = Callable[[str], List[str]]


def resolve_ipv4(hostname: str) -> List[str]:
    """Resolve a hostname to its IPv4 addresses, in resolver order."""
    addresses: List[str] = []
    for _family, _type, _proto, _name, sockaddr in socket.getaddrinfo(
            hostname, None, socket.AF_INET, socket.SOCK_STREAM):
        if sockaddr[0] not in addresses:
            addresses.append(sockaddr[0])
    return addresses


class WeightRegistry:
    """Atomically reloadable address-to-weight table."""

    def __init__(self, default_weight: int = DEFAULT_WEIGHT,
                 resolver: Optional[Resolver] = None):
        """Initialize an empty registry.

        Args:
            default_weight: Weight returned for addresses with no entry
            resolver: Hostname to address list lookup, defaults to DNS
        """
        self.default_weight = default_weight
        self.resolver = resolver or resolve_ipv4
        self.path: Optional[Path] = None
        self.errors: List[ConfigError] = []
        self._weights: Dict[str, int] = {}
        self._load_lock = threading.Lock()
        self.observer: Optional[Observer] = None

    def resolve(self, host: str) -> int:
        """Return the restore weight for an address."""
        return self._weights.get(host, self.default_weight)

    def snapshot(self) -> Dict[str, int]:
        """Copy of the current mapping."""
        return dict(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    def parse(self, lines) -> Dict[str, int]:
        """Build a mapping from weight file lines.

        Malformed lines and unresolvable hostnames are logged, recorded in
        ``self.errors`` and skipped.

        Args:
            lines: Iterable of text lines

        Returns:
            Newly built mapping
        """
        weights: Dict[str, int] = {}
        errors: List[ConfigError] = []
        for lineno, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            match = _IP_ENTRY.match(line)
            if match:
                weights[match.group(1)] = int(match.group(2))
                continue

            match = _HOST_ENTRY.match(line)
            if not match:
                errors.append(ConfigError(f"line {lineno}: malformed weight entry {line!r}"))
                continue

            hostname, weight = match.group(1), int(match.group(2))
            try:
                addresses = self.resolver(hostname)
            except OSError as e:
                errors.append(ConfigError(f"line {lineno}: cannot resolve {hostname}: {e}"))
                continue
            if not addresses:
                errors.append(ConfigError(f"line {lineno}: {hostname} has no addresses"))
                continue
            for address in addresses:
                weights[address] = weight

        for error in errors:
            logger.warning(f"Weight file: {error}")
        self.errors = errors
        return weights

    def load(self, path) -> bool:
        """Load a weight file and swap the new mapping in.

        Args:
            path: Weight file path

        Returns:
            True if the mapping was replaced, False if the file could not be
            read (the previous mapping stays in place)
        """
        path = Path(path)
        with self._load_lock:
            self.path = path
            try:
                with open(path, 'r', encoding='utf-8', errors='replace') as f:
                    weights = self.parse(f)
            except OSError as e:
                logger.error(f"Cannot read weight file {path}: {e}; keeping {len(self._weights)} entries")
                return False
            self._weights = weights
        logger.info(f"Loaded {len(weights)} weight entries from {path}")
        return True

    def reload(self) -> bool:
        """Reload the last loaded file, if any."""
        if self.path is None:
            return False
        return self.load(self.path)

    def enable_hot_reload(self) -> None:
        """Reload the weight file whenever it changes on disk."""
        if self.path is None:
            raise ConfigError("No weight file loaded; nothing to watch")
        if self.observer is not None:
            logger.warning("Weight file watch already enabled")
            return

        self.observer = Observer()
        self.observer.schedule(WeightFileHandler(self), str(self.path.parent), recursive=False)
        self.observer.start()
        logger.info(f"Watching {self.path} for changes")

    def disable_hot_reload(self) -> None:
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None


class WeightFileHandler(FileSystemEventHandler):
    """Reload the registry when its weight file is written or replaced."""

    def __init__(self, registry: WeightRegistry):
        self.registry = registry

    def _is_weight_file(self, src_path) -> bool:
        path = self.registry.path
        return path is not None and Path(src_path).name == path.name

    def on_modified(self, event):
        if event.is_directory or not self._is_weight_file(event.src_path):
            return
        logger.info(f"Weight file modified: {event.src_path}")
        self.registry.reload()

    def on_created(self, event):
        if event.is_directory or not self._is_weight_file(event.src_path):
            return
        logger.info(f"Weight file created: {event.src_path}")
        self.registry.reload()

    def on_moved(self, event):
        if event.is_directory or not self._is_weight_file(event.dest_path):
            return
        logger.info(f"Weight file replaced: {event.dest_path}")
        self.registry.reload()
