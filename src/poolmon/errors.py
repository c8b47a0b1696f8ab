"""Exception hierarchy for poolmon."""


class PoolmonError(Exception):
    """Base class for all poolmon errors."""


class ConnectError(PoolmonError):
    """Could not reach the director or a backend host."""


class HandshakeError(ConnectError):
    """Director answered the version handshake with a different line."""

    def __init__(self, sent: bytes, received: bytes):
        self.sent = sent
        self.received = received
        super().__init__(f"Director handshake mismatch: sent {sent!r}, got {received!r}")


class ProtocolError(PoolmonError):
    """Director conversation broke off or could not be written."""


class PortTimeoutError(PoolmonError, TimeoutError):
    """A port check exceeded its time bound."""


class ConfigError(PoolmonError):
    """Invalid configuration or weight file entry."""
