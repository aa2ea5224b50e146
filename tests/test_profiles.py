"""
Unit tests for profile collection.

HTTP is mocked; the collector only ever talks to ``requests.get``.
"""

import threading
from unittest.mock import MagicMock, patch

import requests

from svcbench.benchmarks.profiles import ProfileCollector

CPU_URL = "http://t/debug/pprof/profile?seconds=30"
HEAP_URL = "http://t/debug/pprof/heap"
ALLOCS_URL = "http://t/debug/pprof/allocs"


def profile_response(content=b"pprof"):
    response = MagicMock()
    response.content = content
    return response


class TestProfileCollector:
    """Test cases for ProfileCollector."""

    def test_cpu_fetched_while_load_runs(self, tmp_path):
        """Test that the CPU profile is requested by start, snapshots only by finish."""
        cpu_requested = threading.Event()

        def fake_get(url, timeout):
            if url == CPU_URL:
                cpu_requested.set()
            return profile_response(url.encode())

        collector = ProfileCollector(
            {"cpu": CPU_URL, "heap": HEAP_URL, "allocs": ALLOCS_URL}, tmp_path, timeout_s=5.0
        )

        with patch(
            "svcbench.benchmarks.profiles.requests.get", side_effect=fake_get
        ) as get:
            collector.start()
            assert cpu_requested.wait(timeout=5.0)
            assert [call.args[0] for call in get.call_args_list] == [CPU_URL]

            saved = collector.finish()

        assert [p.name for p in saved] == ["allocs.pprof", "cpu.pprof", "heap.pprof"]
        assert (tmp_path / "heap.pprof").read_bytes() == HEAP_URL.encode()
        assert (tmp_path / "cpu.pprof").read_bytes() == CPU_URL.encode()

    def test_failed_fetch_is_skipped(self, tmp_path, caplog):
        """Test that an unreachable profile endpoint is logged and does not raise."""

        def fake_get(url, timeout):
            if url == HEAP_URL:
                raise requests.ConnectionError("refused")
            return profile_response()

        collector = ProfileCollector({"heap": HEAP_URL, "allocs": ALLOCS_URL}, tmp_path)

        with patch("svcbench.benchmarks.profiles.requests.get", side_effect=fake_get):
            collector.start()
            saved = collector.finish()

        assert [p.name for p in saved] == ["allocs.pprof"]
        assert "Could not collect heap profile" in caplog.text

    def test_error_status_is_skipped(self, tmp_path):
        """Test that a non-2xx answer does not leave a profile file behind."""
        response = profile_response()
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        collector = ProfileCollector({"heap": HEAP_URL}, tmp_path)

        with patch("svcbench.benchmarks.profiles.requests.get", return_value=response):
            collector.start()
            assert collector.finish() == []

        assert not (tmp_path / "heap.pprof").exists()

    def test_disabled_without_urls(self, tmp_path):
        """Test that a collector without URLs makes no requests."""
        collector = ProfileCollector({}, tmp_path)

        with patch("svcbench.benchmarks.profiles.requests.get") as get:
            collector.start()
            assert collector.finish() == []

        assert not collector.enabled
        get.assert_not_called()
