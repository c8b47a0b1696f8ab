"""
HealthScanner for poolmon.
Probes a backend's mail service ports: connect, then expect a banner line.
Plain ports are checked first, TLS ports only once every plain port passed.
"""
import asyncio
import logging
import ssl
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from poolmon.errors import PortTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class PortCheckResult:
    """Outcome of one port check."""
    host: str
    port: int
    tls: bool
    ok: bool
    elapsed: float
    banner: Optional[bytes] = None
    error: Optional[str] = None


def make_tls_context() -> ssl.SSLContext:
    """TLS context for probing backends by address; certificates are not verified."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class HealthScanner:
    def __init__(self, ports: Iterable[int] = (110, 143), ssl_ports: Iterable[int] = (),
                 timeout: float = 5.0, tls_context: Optional[ssl.SSLContext] = None):
        """
        ports: Plain TCP ports, checked in order.
        ssl_ports: TLS ports, checked in order after all plain ports pass.
        timeout: Seconds allowed for connect plus banner on each port.
        """
        self.ports = list(ports)
        self.ssl_ports = list(ssl_ports)
        self.timeout = timeout
        self._tls_context = tls_context

    @property
    def tls_context(self) -> ssl.SSLContext:
        if self._tls_context is None:
            self._tls_context = make_tls_context()
        return self._tls_context

    async def _probe(self, host: str, port: int, tls: bool) -> bytes:
        writer = None
        try:
            reader, writer = await asyncio.open_connection(
                host, port, ssl=self.tls_context if tls else None)
            return await reader.readline()
        finally:
            if writer is not None:
                writer.close()
                try:
                    await asyncio.wait_for(writer.wait_closed(), timeout=self.timeout)
                except (asyncio.TimeoutError, OSError):
                    writer.transport.abort()

    async def read_banner(self, host: str, port: int, tls: bool = False) -> bytes:
        """Connect and return the first line, raising PortTimeoutError past the timeout."""
        try:
            return await asyncio.wait_for(self._probe(host, port, tls), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise PortTimeoutError(f"timed out after {self.timeout}s") from e

    async def check_port(self, host: str, port: int, tls: bool = False) -> PortCheckResult:
        """Connect to one port and wait for a banner line, bounded by the timeout."""
        start = time.monotonic()
        error = None
        banner = None
        try:
            banner = await self.read_banner(host, port, tls)
            if not banner:
                error = "connection closed without banner"
        except PortTimeoutError as e:
            error = str(e)
        except (OSError, ValueError) as e:
            error = str(e) or e.__class__.__name__
        result = PortCheckResult(
            host=host, port=port, tls=tls, ok=error is None,
            elapsed=time.monotonic() - start, banner=banner or None, error=error,
        )
        if not result.ok:
            kind = "ssl port" if tls else "port"
            logger.debug(f"{host} {kind} {port} failed: {error}")
        return result

    async def scan_ports(self, host: str) -> List[PortCheckResult]:
        """Run the ordered checks, stopping at the first failure."""
        results: List[PortCheckResult] = []
        for port in self.ports:
            result = await self.check_port(host, port)
            results.append(result)
            if not result.ok:
                return results
        for port in self.ssl_ports:
            result = await self.check_port(host, port, tls=True)
            results.append(result)
            if not result.ok:
                return results
        return results

    async def scan(self, host: str) -> bool:
        """True when every configured port answered with a banner."""
        results = await self.scan_ports(host)
        return bool(results) and all(r.ok for r in results)
