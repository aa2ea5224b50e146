from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Mapping

import requests

LOGGER = logging.getLogger("svcbench.benchmark.profiles")

# Profiles sampled over a window are fetched while load runs; snapshots after it.
CONCURRENT_PROFILES: frozenset[str] = frozenset({"cpu", "profile", "trace"})
PROFILE_SUFFIX = ".pprof"


class ProfileCollector:
    """Fetches pprof-style profiles from a target's debug endpoint around a timed phase.

    ``urls`` maps a profile name to the URL serving it, e.g.
    ``{"cpu": "http://localhost:8282/debug/pprof/profile?seconds=30",
    "heap": "http://localhost:8282/debug/pprof/heap"}``. Windowed profiles
    (see ``CONCURRENT_PROFILES``) are requested in a background thread when
    ``start`` is called; every other profile is fetched by ``finish`` once the
    load is over. A profile that cannot be fetched is logged and skipped; it
    never fails the scenario.
    """

    def __init__(
        self,
        urls: Mapping[str, str],
        output_dir: Path,
        timeout_s: float = 60.0,
    ) -> None:
        self._urls = dict(urls)
        self._output_dir = Path(output_dir)
        self._timeout_s = timeout_s
        self._threads: list[threading.Thread] = []
        self._saved: list[Path] = []
        self._saved_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._urls)

    def start(self) -> None:
        for name, url in self._urls.items():
            if name not in CONCURRENT_PROFILES:
                continue
            thread = threading.Thread(
                target=self._fetch,
                args=(name, url),
                name=f"profile-{name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def finish(self) -> list[Path]:
        deadline = time.perf_counter() + self._timeout_s
        for name, url in self._urls.items():
            if name not in CONCURRENT_PROFILES:
                self._fetch(name, url)
        for thread in self._threads:
            thread.join(timeout=max(deadline - time.perf_counter(), 0.0))
            if thread.is_alive():
                LOGGER.warning("Profile fetch %s still running; not waiting for it", thread.name)
        self._threads = []
        with self._saved_lock:
            return sorted(self._saved)

    def _fetch(self, name: str, url: str) -> None:
        try:
            response = requests.get(url, timeout=self._timeout_s)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning("Could not collect %s profile from %s: %s", name, url, exc)
            return
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"{name}{PROFILE_SUFFIX}"
        path.write_bytes(response.content)
        LOGGER.info("Saved %s profile (%d bytes) to %s", name, len(response.content), path)
        with self._saved_lock:
            self._saved.append(path)


__all__ = ["CONCURRENT_PROFILES", "ProfileCollector"]
