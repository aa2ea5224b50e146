from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence

import docker
import requests
from docker.errors import DockerException
from docker.models.containers import Container

from .errors import TargetUnavailable

LOGGER = logging.getLogger("svcbench.benchmark.targets")


def _always() -> bool:
    return True


@dataclass
class TargetHandle:
    """Lifecycle reference to a running service under test."""

    label: str
    endpoint: str | None
    probe: Callable[[], bool] = _always
    alive: Callable[[], bool] = _always
    pid: int | None = None
    container_id: str | None = None

    def is_ready(self) -> bool:
        return self.probe()

    def is_alive(self) -> bool:
        return self.alive()


class HttpHealthProbe:
    """Side-effect free readiness check: a GET that answers with a 2xx status."""

    def __init__(self, url: str, timeout_s: float = 2.0) -> None:
        self.url = url
        self._timeout_s = timeout_s

    def __call__(self) -> bool:
        try:
            response = requests.get(self.url, timeout=self._timeout_s)
        except requests.RequestException as exc:
            LOGGER.debug("Readiness probe %s not answering: %s", self.url, exc)
            return False
        return 200 <= response.status_code < 300


def health_url(endpoint: str, health_path: str) -> str:
    return f"{endpoint.rstrip('/')}/{health_path.lstrip('/')}"


class Target:
    """Starts (or confirms) a target and tears it down on every exit path.

    ``acquire()`` returns a context manager yielding a ready ``TargetHandle``.
    A target that does not answer its probe within ``readiness_attempts``
    polls spaced ``readiness_interval_s`` apart raises ``TargetUnavailable``
    after being stopped.
    """

    def __init__(
        self,
        label: str,
        readiness_attempts: int = 30,
        readiness_interval_s: float = 1.0,
    ) -> None:
        self.label = label
        self._readiness_attempts = max(readiness_attempts, 1)
        self._readiness_interval_s = readiness_interval_s

    def acquire(self) -> contextlib.AbstractContextManager[TargetHandle]:
        return _TargetContext(self)

    def _start(self) -> TargetHandle:
        raise NotImplementedError

    def _stop(self, handle: TargetHandle) -> None:
        return None

    def _wait_until_ready(self, handle: TargetHandle) -> None:
        for attempt in range(1, self._readiness_attempts + 1):
            if handle.is_ready():
                LOGGER.info("Target %s ready after %d probe(s)", self.label, attempt)
                return
            if not handle.is_alive():
                raise TargetUnavailable(f"target {self.label!r} exited during startup")
            if attempt < self._readiness_attempts:
                time.sleep(self._readiness_interval_s)
        LOGGER.warning(
            "Target %s not ready after %d probe(s)", self.label, self._readiness_attempts
        )
        raise TargetUnavailable(f"target {self.label!r} unreachable")


class _TargetContext(contextlib.AbstractContextManager[TargetHandle]):
    def __init__(self, target: Target) -> None:
        self._target = target
        self._handle: TargetHandle | None = None

    def __enter__(self) -> TargetHandle:
        handle = self._target._start()
        self._handle = handle
        try:
            self._target._wait_until_ready(handle)
        except BaseException:
            self._release()
            raise
        return handle

    def __exit__(self, exc_type, exc, tb) -> None:
        self._release()

    def _release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._target._stop(handle)


class LocalTarget(Target):
    """No service to manage; used by command and in-process operations."""

    def __init__(self, label: str = "local", endpoint: str | None = None) -> None:
        super().__init__(label, readiness_attempts=1, readiness_interval_s=0.0)
        self._endpoint = endpoint

    def _start(self) -> TargetHandle:
        return TargetHandle(label=self.label, endpoint=self._endpoint)


class ExternalTarget(Target):
    """An already running endpoint; only reachability is confirmed."""

    def __init__(
        self,
        label: str,
        endpoint: str,
        health_path: str = "/health",
        readiness_attempts: int = 30,
        readiness_interval_s: float = 1.0,
        probe: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(label, readiness_attempts, readiness_interval_s)
        self._endpoint = endpoint
        self._probe = probe or HttpHealthProbe(health_url(endpoint, health_path))

    def _start(self) -> TargetHandle:
        LOGGER.info("Confirming target %s at %s", self.label, self._endpoint)
        return TargetHandle(label=self.label, endpoint=self._endpoint, probe=self._probe)


class ProcessTarget(Target):
    """Launches the service as a local child process, e.g. ``opa run --server``."""

    def __init__(
        self,
        label: str,
        command: Sequence[str],
        endpoint: str,
        health_path: str = "/health",
        environment: Dict[str, str] | None = None,
        cwd: str | None = None,
        readiness_attempts: int = 30,
        readiness_interval_s: float = 1.0,
        stop_timeout_s: float = 10.0,
        probe: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(label, readiness_attempts, readiness_interval_s)
        self._command = list(command)
        self._endpoint = endpoint
        self._environment = dict(environment or {})
        self._cwd = cwd
        self._stop_timeout_s = stop_timeout_s
        self._probe = probe or HttpHealthProbe(health_url(endpoint, health_path))
        self._process: subprocess.Popen | None = None

    def _start(self) -> TargetHandle:
        LOGGER.info("Starting target %s: %s", self.label, " ".join(self._command))
        try:
            process = subprocess.Popen(
                self._command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env={**os.environ, **self._environment},
                cwd=self._cwd,
            )
        except OSError as exc:
            raise TargetUnavailable(
                f"target {self.label!r} could not be started: {exc}"
            ) from exc
        self._process = process
        LOGGER.info("Target %s started with PID %d", self.label, process.pid)
        return TargetHandle(
            label=self.label,
            endpoint=self._endpoint,
            probe=self._probe,
            alive=lambda: process.poll() is None,
            pid=process.pid,
        )

    def _stop(self, handle: TargetHandle) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        LOGGER.info("Stopping target %s (PID %d)", self.label, process.pid)
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=self._stop_timeout_s)
            except subprocess.TimeoutExpired:
                LOGGER.warning("Target %s ignored SIGTERM; killing", self.label)
                process.kill()
                process.wait()


class DockerTarget(Target):
    """Provision the service as a Docker container using the Docker API."""

    def __init__(
        self,
        label: str,
        image: str,
        endpoint: str,
        environment: Dict[str, str] | None = None,
        ports: Dict[str, int] | None = None,
        command: Sequence[str] | None = None,
        network_names: Iterable[str] = (),
        health_path: str = "/health",
        readiness_attempts: int = 30,
        readiness_interval_s: float = 1.0,
        client: docker.DockerClient | None = None,
        probe: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(label, readiness_attempts, readiness_interval_s)
        self._image = image
        self._endpoint = endpoint
        self._environment = dict(environment or {})
        self._ports = dict(ports or {})
        self._command = list(command) if command else None
        self._network_names: List[str] = list(network_names)
        self._client = client
        self._probe = probe or HttpHealthProbe(health_url(endpoint, health_path))
        self._container: Container | None = None

    def _start(self) -> TargetHandle:
        name = f"svcbench-target-{self.label}-{int(time.time())}"
        LOGGER.info("Starting container %s from image %s", name, self._image)
        try:
            container = self._docker().containers.run(
                self._image,
                command=self._command,
                name=name,
                detach=True,
                environment=self._environment,
                ports=self._ports,
                network=self._primary_network(),
            )
        except DockerException as exc:
            raise TargetUnavailable(
                f"target {self.label!r} could not be started: {exc}"
            ) from exc
        self._attach_additional_networks(container)
        self._container = container
        return TargetHandle(
            label=self.label,
            endpoint=self._endpoint,
            probe=self._probe,
            alive=lambda: _container_running(container),
            container_id=container.id,
        )

    def _stop(self, handle: TargetHandle) -> None:
        container, self._container = self._container, None
        if container is None:
            return
        LOGGER.info("Stopping container %s", container.name)
        with contextlib.suppress(DockerException):
            container.stop(timeout=10)
        with contextlib.suppress(DockerException):
            container.remove(force=True)

    def _docker(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def _primary_network(self) -> str | None:
        return self._network_names[0] if self._network_names else None

    def _attach_additional_networks(self, container: Container) -> None:
        for network in self._network_names[1:]:
            with contextlib.suppress(DockerException):
                self._docker().networks.get(network).connect(container)


def _container_running(container: Container) -> bool:
    with contextlib.suppress(DockerException):
        container.reload()
        return bool(container.attrs.get("State", {}).get("Running", False))
    return False


__all__ = [
    "DockerTarget",
    "ExternalTarget",
    "HttpHealthProbe",
    "LocalTarget",
    "ProcessTarget",
    "Target",
    "TargetHandle",
    "health_url",
]
