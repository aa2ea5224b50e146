"""
Unit tests for target lifecycle management.

Docker and HTTP are mocked; process targets launch a short-lived Python child.
"""

import sys
from unittest.mock import MagicMock, patch

import pytest
import requests
from docker.errors import APIError, DockerException

from svcbench.benchmarks.errors import TargetUnavailable
from svcbench.benchmarks.targets import (
    DockerTarget,
    ExternalTarget,
    HttpHealthProbe,
    LocalTarget,
    ProcessTarget,
    health_url,
)


class TestHttpHealthProbe:
    """Test cases for HttpHealthProbe."""

    def test_ready_on_2xx(self):
        """Test that a 200 answer means ready."""
        with patch("svcbench.benchmarks.targets.requests.get") as get:
            get.return_value.status_code = 200
            assert HttpHealthProbe("http://t/health")()
            get.assert_called_once_with("http://t/health", timeout=2.0)

    def test_not_ready_on_error_status(self):
        """Test that a 500 answer means not ready."""
        with patch("svcbench.benchmarks.targets.requests.get") as get:
            get.return_value.status_code = 500
            assert not HttpHealthProbe("http://t/health")()

    def test_not_ready_when_refused(self):
        """Test that a refused connection is a probe miss, not an exception."""
        with patch(
            "svcbench.benchmarks.targets.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            assert not HttpHealthProbe("http://t/health")()

    def test_health_url(self):
        """Test health URL joining."""
        assert health_url("http://t:8181/", "/health") == "http://t:8181/health"


class TestExternalTarget:
    """Test cases for ExternalTarget."""

    def test_ready_after_retries(self):
        """Test that readiness polls until the probe answers."""
        answers = iter([False, False, True])
        target = ExternalTarget(
            "ext", "http://t", readiness_interval_s=0.0, probe=lambda: next(answers)
        )

        with target.acquire() as handle:
            assert handle.endpoint == "http://t"
            assert handle.label == "ext"

    def test_unreachable(self):
        """Test that an exhausted readiness budget raises TargetUnavailable."""
        probe = MagicMock(return_value=False)
        target = ExternalTarget(
            "ext", "http://t", readiness_attempts=4, readiness_interval_s=0.0, probe=probe
        )

        with pytest.raises(TargetUnavailable, match="unreachable"):
            with target.acquire():
                pass

        assert probe.call_count == 4


class TestLocalTarget:
    """Test cases for LocalTarget."""

    def test_always_ready(self):
        """Test that a local target needs no probing."""
        with LocalTarget(endpoint="http://x").acquire() as handle:
            assert handle.is_ready()
            assert handle.is_alive()
            assert handle.endpoint == "http://x"


class TestProcessTarget:
    """Test cases for ProcessTarget."""

    def test_process_stopped_on_exit(self):
        """Test that the child process is terminated when the scope ends."""
        target = ProcessTarget(
            "proc",
            command=[sys.executable, "-c", "import time; time.sleep(30)"],
            endpoint="http://localhost:1",
            readiness_interval_s=0.0,
            stop_timeout_s=5.0,
            probe=lambda: True,
        )

        with target.acquire() as handle:
            assert handle.pid is not None
            assert handle.is_alive()
            process = target._process

        assert process.poll() is not None
        assert not handle.is_alive()

    def test_process_stopped_when_never_ready(self):
        """Test that a process whose probe never answers is still torn down."""
        target = ProcessTarget(
            "proc",
            command=[sys.executable, "-c", "import time; time.sleep(30)"],
            endpoint="http://localhost:1",
            readiness_attempts=2,
            readiness_interval_s=0.0,
            probe=lambda: False,
        )
        started = []
        original_start = target._start

        def spy():
            handle = original_start()
            started.append(target._process)
            return handle

        target._start = spy

        with pytest.raises(TargetUnavailable):
            with target.acquire():
                pass

        assert started[0].poll() is not None

    def test_exit_during_startup(self):
        """Test that a process that exits immediately is reported as such."""
        target = ProcessTarget(
            "proc",
            command=[sys.executable, "-c", "raise SystemExit(1)"],
            endpoint="http://localhost:1",
            readiness_attempts=200,
            readiness_interval_s=0.05,
            probe=lambda: False,
        )

        with pytest.raises(TargetUnavailable, match="exited during startup"):
            with target.acquire():
                pass

    def test_unlaunchable_command(self):
        """Test that a missing binary is a readiness failure."""
        target = ProcessTarget(
            "proc", command=["/nonexistent/server"], endpoint="http://localhost:1"
        )

        with pytest.raises(TargetUnavailable, match="could not be started"):
            with target.acquire():
                pass


class TestDockerTarget:
    """Test cases for DockerTarget."""

    def make_target(self, client, **kwargs):
        return DockerTarget(
            "docker",
            image="openpolicyagent/opa:latest",
            endpoint="http://localhost:8181",
            ports={"8181/tcp": 8181},
            command=["run", "--server"],
            readiness_interval_s=0.0,
            client=client,
            probe=lambda: True,
            **kwargs,
        )

    def test_container_lifecycle(self):
        """Test that the container is started, exposed and removed."""
        client = MagicMock()
        container = client.containers.run.return_value
        container.id = "abc123"
        container.attrs = {"State": {"Running": True}}

        with self.make_target(client, network_names=["bench"]).acquire() as handle:
            assert handle.container_id == "abc123"
            assert handle.is_alive()

        _, kwargs = client.containers.run.call_args
        assert kwargs["detach"] is True
        assert kwargs["ports"] == {"8181/tcp": 8181}
        assert kwargs["network"] == "bench"
        container.stop.assert_called_once()
        container.remove.assert_called_once_with(force=True)

    def test_start_failure(self):
        """Test that a Docker API error is a readiness failure."""
        client = MagicMock()
        client.containers.run.side_effect = APIError("no such image")

        with pytest.raises(TargetUnavailable, match="could not be started"):
            with self.make_target(client).acquire():
                pass

    def test_daemon_unreachable(self):
        """Test that a missing Docker daemon is a readiness failure, not a crash."""
        with patch(
            "svcbench.benchmarks.targets.docker.from_env",
            side_effect=DockerException("daemon down"),
        ):
            with pytest.raises(TargetUnavailable, match="could not be started: daemon down"):
                with self.make_target(None).acquire():
                    pass

    def test_container_not_running(self):
        """Test liveness follows the container state."""
        client = MagicMock()
        container = client.containers.run.return_value
        container.attrs = {"State": {"Running": False}}

        with self.make_target(client).acquire() as handle:
            assert not handle.is_alive()

    def test_removal_errors_suppressed(self):
        """Test that teardown errors do not mask the scenario outcome."""
        client = MagicMock()
        container = client.containers.run.return_value
        container.stop.side_effect = APIError("already stopped")

        with self.make_target(client).acquire():
            pass

        container.remove.assert_called_once_with(force=True)
