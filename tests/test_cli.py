"""Tests for the spdk-telemetry CLI."""

import functools
import signal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import requests
from typer.testing import CliRunner

from spdk_telemetry import __version__, cli
from spdk_telemetry.collector import StopTimer
from spdk_telemetry.fetcher import MetricsFetcher
from spdk_telemetry.observability import ConfigurationError
from spdk_telemetry.registry import BYTES_READ_METRIC
from tests.conftest import StubSPDKAdapter, counter_values, iostat_reply, stub_session

runner = CliRunner()


class OneShotTimer:
    """Lets the loop run one cycle, then reports stopped."""

    def __init__(self):
        self.stopped = False

    def wait(self, seconds):
        self.stopped = True
        return True

    def stop(self):
        self.stopped = True


class HungSPDKAdapter(StubSPDKAdapter):
    """Never answers: SIGTERM is delivered while the request is outstanding."""

    def send(self, request, **kwargs):
        self.requests.append(request)
        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        raise AssertionError("SIGTERM did not interrupt the request")


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the JSON handler off CliRunner's temporary streams."""
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    for name in (
        "SPDK_RPC_URL",
        "SPDK_RPC_TIMEOUT",
        "ON_FETCH_ERROR",
        "POLL_INTERVAL_SECONDS",
        "METRIC_EXPORT_INTERVAL_MS",
        "SHUTDOWN_TIMEOUT_SECONDS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def wire(telemetry):
    """Point the CLI at in-memory telemetry and a stub SPDK server."""
    def _wire(adapter):
        fetcher_factory = functools.partial(MetricsFetcher, session=stub_session(adapter))
        return (
            patch.object(cli, "init_telemetry", return_value=telemetry),
            patch.object(cli, "MetricsFetcher", fetcher_factory),
        )

    return _wire


class TestOnce:
    """Test the single-cycle command."""

    def test_prints_bdev_line(self, wire, malloc0, metric_reader):
        telemetry_patch, fetcher_patch = wire(StubSPDKAdapter(iostat_reply(malloc0)))

        with telemetry_patch, fetcher_patch:
            # Counters are read before shutdown stops the reader
            with patch.object(cli.Telemetry, "shutdown", return_value=True):
                result = runner.invoke(cli.app, ["once"])
            values = counter_values(metric_reader, BYTES_READ_METRIC)

        assert result.exit_code == 0
        assert "Bdev: Malloc0, BytesRead: 1024, NumReadOps: 4" in result.output
        assert values == {"Malloc0": 1024}

    def test_malformed_json_exits_non_zero(self, wire, metric_reader):
        telemetry_patch, fetcher_patch = wire(StubSPDKAdapter(b"not json"))

        with telemetry_patch, fetcher_patch:
            with patch.object(cli.Telemetry, "shutdown", return_value=True):
                result = runner.invoke(cli.app, ["once"])
            values = counter_values(metric_reader, BYTES_READ_METRIC)

        assert result.exit_code == 1
        assert values == {}

    def test_shuts_telemetry_down(self, wire, telemetry, malloc0):
        telemetry_patch, fetcher_patch = wire(StubSPDKAdapter(iostat_reply(malloc0)))

        with telemetry_patch, fetcher_patch:
            result = runner.invoke(cli.app, ["once"])

        assert result.exit_code == 0
        assert telemetry.is_shut_down


class TestRun:
    """Test the polling command."""

    def test_connection_failure_exits_non_zero(self, wire, telemetry):
        adapter = StubSPDKAdapter(error=requests.ConnectionError("connection refused"))
        telemetry_patch, fetcher_patch = wire(adapter)

        with telemetry_patch, fetcher_patch:
            result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == 1
        assert len(adapter.requests) == 1
        assert telemetry.is_shut_down

    def test_stops_when_timer_stops(self, wire, malloc0):
        adapter = StubSPDKAdapter(iostat_reply(malloc0))
        telemetry_patch, fetcher_patch = wire(adapter)

        with telemetry_patch, fetcher_patch, patch.object(cli, "StopTimer", OneShotTimer):
            result = runner.invoke(cli.app, ["run", "--interval", "0.1"])

        assert result.exit_code == 0
        assert len(adapter.requests) == 1
        assert result.output.count("Bdev: Malloc0") == 1

    def test_skip_policy_survives_failed_cycle(self, wire):
        adapter = StubSPDKAdapter(error=requests.ConnectionError("connection refused"))
        telemetry_patch, fetcher_patch = wire(adapter)

        with telemetry_patch, fetcher_patch, patch.object(cli, "StopTimer", OneShotTimer):
            result = runner.invoke(cli.app, ["run", "--on-error", "skip"])

        assert result.exit_code == 0

    def test_configuration_error_is_fatal(self):
        with patch.object(cli, "init_telemetry", side_effect=ConfigurationError("no exporter")):
            result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == 1
        assert "no exporter" in result.output

    def test_invalid_option_rejected_before_startup(self):
        with patch.object(cli, "init_telemetry") as init:
            result = runner.invoke(cli.app, ["run", "--on-error", "retry"])

        assert result.exit_code == 1
        init.assert_not_called()

    def test_non_numeric_env_value_exits_cleanly(self, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "five")

        with patch.object(cli, "init_telemetry") as init:
            result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == 1
        assert "POLL_INTERVAL_SECONDS" in result.output
        assert isinstance(result.exception, SystemExit)
        init.assert_not_called()

    def test_unknown_log_level_rejected_before_logging_setup(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        with patch.object(cli, "setup_logging") as setup, patch.object(cli, "init_telemetry") as init:
            result = runner.invoke(cli.app, ["once"])

        assert result.exit_code == 1
        assert "LOUD" in result.output
        setup.assert_not_called()
        init.assert_not_called()


class TestSignalHandling:
    """Test SIGINT/SIGTERM end the loop and telemetry still shuts down."""

    @pytest.fixture
    def installed(self):
        timer = StopTimer()
        collector = SimpleNamespace(busy=False)
        previous = cli._install_signal_handlers(timer, collector)
        try:
            yield timer, collector, signal.getsignal(signal.SIGTERM)
        finally:
            cli._restore_signal_handlers(previous)

    def test_signal_between_cycles_stops_timer(self, installed):
        timer, _, handler = installed

        handler(signal.SIGTERM, None)

        assert timer.stopped

    def test_signal_during_poll_interrupts_it(self, installed):
        timer, collector, handler = installed
        collector.busy = True

        with pytest.raises(KeyboardInterrupt):
            handler(signal.SIGINT, None)
        assert timer.stopped

    def test_previous_handlers_restored(self):
        before = signal.getsignal(signal.SIGTERM)

        previous = cli._install_signal_handlers(StopTimer(), SimpleNamespace(busy=False))
        cli._restore_signal_handlers(previous)

        assert signal.getsignal(signal.SIGTERM) == before

    def test_sigterm_during_hung_rpc_exits_and_shuts_down(self, wire, telemetry):
        before = signal.getsignal(signal.SIGTERM)
        adapter = HungSPDKAdapter()
        telemetry_patch, fetcher_patch = wire(adapter)

        with telemetry_patch, fetcher_patch:
            result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == 0
        assert len(adapter.requests) == 1
        assert telemetry.is_shut_down
        assert signal.getsignal(signal.SIGTERM) == before


class TestConfigCommand:
    """Test the config display command."""

    def test_masks_password(self, monkeypatch):
        monkeypatch.setenv("SPDK_RPC_PASSWORD", "hunter2")

        result = runner.invoke(cli.app, ["config"])

        assert result.exit_code == 0
        assert "hunter2" not in result.output
        assert "SPDK Telemetry Configuration" in result.output

    def test_reports_unknown_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        result = runner.invoke(cli.app, ["config"])

        assert result.exit_code == 0
        assert "ERROR: log_level" in result.output


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(cli.app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output
