"""Director Admin Protocol Client.

Talks to the director's administrative unix socket using its line-oriented,
tab-separated text protocol. Every logical action (listing hosts, disabling a
host, enabling a host) runs on its own short-lived session; sessions are never
kept across scan cycles.

Author: Poolmon Team
Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from poolmon.errors import ConnectError, HandshakeError, ProtocolError

logger = logging.getLogger(__name__)

HANDSHAKE = b"VERSION\tdirector-doveadm\t1\t0\n"
END_OF_LIST = b"\n"


@dataclass(frozen=True)
class HostRecord:
    """One backend host as reported by HOST-LIST."""
    address: str
    weight: int  # 0 means disabled
    clients: int

    @classmethod
    def parse(cls, line: bytes) -> Optional["HostRecord"]:
        """Parse a HOST-LIST line.

        Args:
            line: Raw line including the trailing newline

        Returns:
            The record, or None if the line is malformed
        """
        parts = line.decode("utf-8", "replace").rstrip("\r\n").split("\t")
        if len(parts) != 3:
            return None
        address, weight, clients = parts
        if not address:
            return None
        try:
            return cls(address=address, weight=int(weight), clients=int(clients))
        except ValueError:
            return None


class DirectorSession:
    """An open, handshaken connection to the director."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 read_timeout: float):
        self.reader = reader
        self.writer = writer
        self.read_timeout = read_timeout
        self.closed = False

    async def _write(self, line: bytes) -> None:
        try:
            self.writer.write(line)
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise ProtocolError(f"Failed to send {line!r}: {e}") from e
        logger.debug(f"director <- {line!r}")

    async def _send(self, *fields: str) -> None:
        await self._write("\t".join(fields).encode("utf-8") + b"\n")

    async def _readline(self) -> bytes:
        try:
            return await asyncio.wait_for(self.reader.readline(), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            raise ProtocolError(f"Director did not answer within {self.read_timeout}s") from e
        except (OSError, ValueError) as e:
            raise ProtocolError(f"Director read failed: {e}") from e

    async def list_hosts(self) -> List[HostRecord]:
        """Fetch the director's current backend list.

        Returns:
            Host records, malformed lines dropped

        Raises:
            ProtocolError: If the listing is cut short
        """
        await self._send("HOST-LIST")
        hosts: List[HostRecord] = []
        while True:
            line = await self._readline()
            if not line:
                raise ProtocolError("Director closed the connection during HOST-LIST")
            if line == END_OF_LIST:
                break
            record = HostRecord.parse(line)
            if record is None:
                logger.debug(f"Dropping malformed host record {line!r}")
                continue
            hosts.append(record)
        return hosts

    async def set_weight(self, host: str, weight: int) -> None:
        """Send HOST-SET. The director sends no acknowledgement."""
        await self._send("HOST-SET", host, str(weight))

    async def flush(self, host: str) -> None:
        """Send HOST-FLUSH. The director sends no acknowledgement."""
        await self._send("HOST-FLUSH", host)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def __aenter__(self) -> "DirectorSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class DirectorClient:
    """Factory for director sessions plus the compound actions poolmon issues."""

    def __init__(self, socket_path: str, read_timeout: float = 10.0):
        """Initialize the director client.

        Args:
            socket_path: Filesystem path of the director admin socket
            read_timeout: Seconds to wait for any single reply line
        """
        self.socket_path = socket_path
        self.read_timeout = read_timeout

    async def connect(self) -> DirectorSession:
        """Open a session and perform the version handshake.

        Returns:
            A ready session; use it as an async context manager

        Raises:
            ConnectError: If the socket cannot be reached
            HandshakeError: If the director does not echo the version line
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(self.socket_path),
                timeout=self.read_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Timed out connecting to {self.socket_path}") from e
        except OSError as e:
            raise ConnectError(f"Cannot connect to {self.socket_path}: {e}") from e

        session = DirectorSession(reader, writer, self.read_timeout)
        try:
            await session._write(HANDSHAKE)
            reply = await session._readline()
        except ProtocolError as e:
            await session.close()
            raise ConnectError(f"Handshake with {self.socket_path} failed: {e}") from e
        if reply != HANDSHAKE:
            await session.close()
            raise HandshakeError(HANDSHAKE, reply)
        return session

    async def list_hosts(self) -> List[HostRecord]:
        async with await self.connect() as session:
            return await session.list_hosts()

    async def disable(self, host: str) -> None:
        """Set a host's weight to 0 and flush its user mappings on one session."""
        async with await self.connect() as session:
            try:
                await session.set_weight(host, 0)
            finally:
                await session.flush(host)

    async def enable(self, host: str, weight: int) -> None:
        """Restore a host to the given weight."""
        async with await self.connect() as session:
            await session.set_weight(host, weight)
