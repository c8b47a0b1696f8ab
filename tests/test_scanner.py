import asyncio
import socket

import pytest

from poolmon.errors import PortTimeoutError
from poolmon.health.scanner import HealthScanner, PortCheckResult


async def start_server(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


def banner_handler(banner=b"+OK Dovecot ready.\r\n"):
    async def handle(reader, writer):
        writer.write(banner)
        await writer.drain()
        await reader.read()
        writer.close()
    return handle


def unused_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.mark.asyncio
async def test_banner_port_passes():
    server, port = await start_server(banner_handler())
    async with server:
        result = await HealthScanner(timeout=1).check_port("127.0.0.1", port)

    assert result.ok
    assert result.banner == b"+OK Dovecot ready.\r\n"
    assert result.error is None


@pytest.mark.asyncio
async def test_silent_port_times_out_and_releases_socket():
    released = asyncio.Event()

    async def silent(reader, writer):
        await reader.read()
        released.set()
        writer.close()

    server, port = await start_server(silent)
    async with server:
        result = await HealthScanner(timeout=0.2).check_port("127.0.0.1", port)
        await asyncio.wait_for(released.wait(), timeout=2)

    assert not result.ok
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_closed_without_banner_fails():
    async def hang_up(reader, writer):
        writer.close()

    server, port = await start_server(hang_up)
    async with server:
        result = await HealthScanner(timeout=1).check_port("127.0.0.1", port)

    assert not result.ok
    assert result.error == "connection closed without banner"


@pytest.mark.asyncio
async def test_refused_port_fails():
    result = await HealthScanner(timeout=1).check_port("127.0.0.1", unused_port())
    assert not result.ok
    assert result.error


@pytest.mark.asyncio
async def test_scan_healthy_when_all_ports_answer():
    server1, port1 = await start_server(banner_handler(b"+OK\r\n"))
    server2, port2 = await start_server(banner_handler(b"* OK IMAP ready\r\n"))
    async with server1, server2:
        scanner = HealthScanner(ports=[port1, port2], timeout=1)
        assert await scanner.scan("127.0.0.1") is True


class RecordingScanner(HealthScanner):
    def __init__(self, failing=(), **kwargs):
        super().__init__(**kwargs)
        self.failing = set(failing)
        self.attempts = []

    async def check_port(self, host, port, tls=False):
        self.attempts.append((port, tls))
        ok = (port, tls) not in self.failing
        return PortCheckResult(host, port, tls, ok, 0.0, error=None if ok else "down")


@pytest.mark.asyncio
async def test_first_plain_failure_short_circuits():
    scanner = RecordingScanner(failing={(110, False)}, ports=[110, 143], ssl_ports=[995, 993])

    assert await scanner.scan("mail2") is False
    assert scanner.attempts == [(110, False)]


@pytest.mark.asyncio
async def test_later_plain_failure_skips_tls_ports():
    scanner = RecordingScanner(failing={(143, False)}, ports=[110, 143], ssl_ports=[993])

    assert await scanner.scan("mail2") is False
    assert scanner.attempts == [(110, False), (143, False)]


@pytest.mark.asyncio
async def test_tls_ports_checked_after_plain_ports():
    scanner = RecordingScanner(ports=[110, 143], ssl_ports=[995, 993])

    assert await scanner.scan("mail1") is True
    assert scanner.attempts == [(110, False), (143, False), (995, True), (993, True)]


@pytest.mark.asyncio
async def test_tls_failure_short_circuits():
    scanner = RecordingScanner(failing={(995, True)}, ports=[110], ssl_ports=[995, 993])

    results = await scanner.scan_ports("mail1")

    assert [r.port for r in results] == [110, 995]
    assert await scanner.scan("mail1") is False


@pytest.mark.asyncio
async def test_plain_only_scan_is_healthy():
    scanner = RecordingScanner(ports=[110, 143])
    assert await scanner.scan("mail1") is True
    assert scanner.attempts == [(110, False), (143, False)]


def test_tls_context_skips_verification():
    import ssl

    context = HealthScanner().tls_context
    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False


@pytest.fixture
def tls_server_context():
    import ssl

    import trustme

    ca = trustme.CA()
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ca.issue_cert("127.0.0.1").configure_cert(context)
    return context


@pytest.mark.asyncio
async def test_tls_port_reads_banner_after_handshake(tls_server_context):
    server = await asyncio.start_server(banner_handler(b"* OK IMAPS ready\r\n"),
                                        "127.0.0.1", 0, ssl=tls_server_context)
    port = server.sockets[0].getsockname()[1]
    async with server:
        result = await HealthScanner(timeout=2).check_port("127.0.0.1", port, tls=True)

    assert result.ok
    assert result.tls
    assert result.banner == b"* OK IMAPS ready\r\n"


@pytest.mark.asyncio
async def test_tls_check_against_plain_service_fails():
    server, port = await start_server(banner_handler(b"+OK plain text\r\n"))
    async with server:
        result = await HealthScanner(timeout=1).check_port("127.0.0.1", port, tls=True)

    assert not result.ok
    assert result.error


@pytest.mark.asyncio
async def test_scan_with_real_plain_and_tls_ports(tls_server_context):
    plain, plain_port = await start_server(banner_handler(b"+OK\r\n"))
    secure = await asyncio.start_server(banner_handler(b"+OK\r\n"),
                                        "127.0.0.1", 0, ssl=tls_server_context)
    secure_port = secure.sockets[0].getsockname()[1]
    async with plain, secure:
        scanner = HealthScanner(ports=[plain_port], ssl_ports=[secure_port], timeout=2)
        results = await scanner.scan_ports("127.0.0.1")

    assert [(r.port, r.tls, r.ok) for r in results] == [
        (plain_port, False, True),
        (secure_port, True, True),
    ]


@pytest.mark.asyncio
async def test_read_banner_raises_port_timeout():
    async def silent(reader, writer):
        await reader.read()
        writer.close()

    server, port = await start_server(silent)
    async with server:
        with pytest.raises(PortTimeoutError):
            await HealthScanner(timeout=0.2).read_banner("127.0.0.1", port)
