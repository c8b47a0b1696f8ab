from click.testing import CliRunner

from poolmon import cli as cli_module
from poolmon.cli import cli
from poolmon.health.scanner import PortCheckResult


def test_weights_check_valid(tmp_path):
    path = tmp_path / "weights"
    path.write_text("# pool\n10.0.0.5:50\n10.0.0.6:75\n")

    result = CliRunner().invoke(cli, ["weights", "check", str(path)])

    assert result.exit_code == 0
    assert "10.0.0.5" in result.output
    assert "Weight file is valid" in result.output


def test_weights_check_reports_malformed_lines(tmp_path):
    path = tmp_path / "weights"
    path.write_text("10.0.0.5:50\nthis is wrong\n")

    result = CliRunner().invoke(cli, ["weights", "check", str(path)])

    assert result.exit_code == 1
    assert "malformed" in result.output


def test_weights_check_missing_file(tmp_path):
    result = CliRunner().invoke(cli, ["weights", "check", str(tmp_path / "nope")])
    assert result.exit_code == 1


def test_config_validate(tmp_path):
    good = tmp_path / "good.yml"
    good.write_text("ports: [110]\nssl_ports: [993]\n")
    bad = tmp_path / "bad.yml"
    bad.write_text("timeout: -1\n")

    runner = CliRunner()
    assert runner.invoke(cli, ["config", "validate", str(good)]).exit_code == 0
    result = runner.invoke(cli, ["config", "validate", str(bad)])
    assert result.exit_code == 1
    assert "timeout must be positive" in result.output


def test_scan_reports_failures(monkeypatch):
    class StubScanner:
        def __init__(self, ports, ssl_ports, timeout):
            self.ports = ports

        async def scan_ports(self, host):
            ok = host == "mail1"
            return [PortCheckResult(host, 110, False, ok, 0.01,
                                    banner=b"+OK\r\n" if ok else None,
                                    error=None if ok else "refused")]

    monkeypatch.setattr(cli_module, "HealthScanner", StubScanner)
    runner = CliRunner()

    result = runner.invoke(cli, ["scan", "mail1"])
    assert result.exit_code == 0

    result = runner.invoke(cli, ["scan", "mail1", "mail2", "--port", "110"])
    assert result.exit_code == 1
    assert "refused" in result.output


def test_hosts_unreachable_director(tmp_path):
    result = CliRunner().invoke(cli, ["hosts", "--socket", str(tmp_path / "none.sock")])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_run_refuses_to_detach_without_log_file(tmp_path, monkeypatch):
    def fail_daemonize():
        raise AssertionError("daemonize must not be reached")

    monkeypatch.setattr(cli_module, "daemonize", fail_daemonize)
    pid_file = tmp_path / "poolmon.pid"

    result = CliRunner().invoke(cli, ["run", "--pidfile", str(pid_file)])

    assert result.exit_code == 1
    assert "log_file is required" in result.output
    assert not pid_file.exists()
