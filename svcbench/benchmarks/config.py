from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..operations import OPERATION_KINDS, OperationSpec, build_operations
from .errors import ConfigError
from .targets import DockerTarget, ExternalTarget, LocalTarget, ProcessTarget, Target

TARGET_KINDS: tuple[str, ...] = ("external", "process", "docker", "local")
DEFAULT_TARGET_URL = "http://localhost:8181"
DEFAULT_CONCURRENCY_LEVELS: tuple[int, ...] = (1, 2, 4, 8)


@dataclass(frozen=True)
class TargetVariant:
    """One deployment configuration of the service under test."""

    label: str
    kind: str = "external"
    endpoint: str | None = None
    command: tuple[str, ...] = ()
    image: str | None = None
    environment: dict[str, str] = field(default_factory=dict, hash=False)
    ports: dict[str, int] = field(default_factory=dict, hash=False)
    networks: tuple[str, ...] = ()
    health_path: str = "/health"
    readiness_attempts: int = 30
    readiness_interval_s: float = 1.0
    profile_urls: dict[str, str] = field(default_factory=dict, hash=False)

    def build_target(self) -> Target:
        if self.kind == "local":
            return LocalTarget(label=self.label, endpoint=self.endpoint)
        if self.kind == "external":
            return ExternalTarget(
                label=self.label,
                endpoint=self.endpoint,
                health_path=self.health_path,
                readiness_attempts=self.readiness_attempts,
                readiness_interval_s=self.readiness_interval_s,
            )
        if self.kind == "process":
            return ProcessTarget(
                label=self.label,
                command=self.command,
                endpoint=self.endpoint,
                health_path=self.health_path,
                environment=self.environment,
                readiness_attempts=self.readiness_attempts,
                readiness_interval_s=self.readiness_interval_s,
            )
        if self.kind == "docker":
            return DockerTarget(
                label=self.label,
                image=self.image,
                endpoint=self.endpoint,
                environment=self.environment,
                ports=self.ports,
                command=self.command or None,
                network_names=self.networks,
                health_path=self.health_path,
                readiness_attempts=self.readiness_attempts,
                readiness_interval_s=self.readiness_interval_s,
            )
        raise ConfigError(f"unknown target kind {self.kind!r}")


@dataclass
class SuiteConfig:
    """Complete cross-product of scenarios the suite runner will execute."""

    operations: list[OperationSpec]
    concurrency_levels: list[int]
    targets: list[TargetVariant]
    iterations: int = 100
    warmup_iterations: int = 10
    call_timeout_s: float = 5.0
    scenario_timeout_s: float | None = 600.0
    grace_s: float = 5.0
    profile_timeout_s: float = 60.0

    def combinations(self) -> Iterator[tuple[OperationSpec, int, TargetVariant]]:
        """Scenario keys in declared order: operations, then concurrency, then targets."""
        return itertools.product(self.operations, self.concurrency_levels, self.targets)

    def validate(self) -> "SuiteConfig":
        if not self.operations:
            raise ConfigError("at least one operation is required")
        if not self.concurrency_levels:
            raise ConfigError("at least one concurrency level is required")
        if not self.targets:
            raise ConfigError("at least one target configuration is required")
        if self.iterations < 1:
            raise ConfigError(f"iterations must be >= 1, got {self.iterations}")
        if self.warmup_iterations < 0:
            raise ConfigError(f"warmup_iterations must be >= 0, got {self.warmup_iterations}")
        if self.call_timeout_s <= 0:
            raise ConfigError("call_timeout_s must be > 0")
        if self.scenario_timeout_s is not None and self.scenario_timeout_s <= 0:
            raise ConfigError("scenario_timeout_s must be > 0")
        if self.grace_s < 0:
            raise ConfigError("grace_s must be >= 0")
        if self.profile_timeout_s <= 0:
            raise ConfigError("profile_timeout_s must be > 0")
        for level in self.concurrency_levels:
            if level < 1:
                raise ConfigError(f"concurrency levels must be >= 1, got {level}")
        _ensure_unique("operation name", [operation.name for operation in self.operations])
        _ensure_unique("target label", [target.label for target in self.targets])
        for operation in self.operations:
            if operation.kind not in OPERATION_KINDS:
                raise ConfigError(
                    f"operation {operation.name!r}: unknown kind {operation.kind!r}"
                )
            if operation.kind == "command" and not operation.command:
                raise ConfigError(f"operation {operation.name!r}: command is required")
        for target in self.targets:
            _validate_target(target)
        return self


def default_suite_config(target_url: str = DEFAULT_TARGET_URL) -> SuiteConfig:
    """Return the built-in policy evaluation suite against a running server."""

    return SuiteConfig(
        operations=build_operations(),
        concurrency_levels=list(DEFAULT_CONCURRENCY_LEVELS),
        targets=[TargetVariant(label="server", kind="external", endpoint=target_url)],
    ).validate()


def load_suite_config(path: str | Path) -> SuiteConfig:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"unable to read suite configuration {path}: {exc}") from exc
    return suite_config_from_dict(raw)


def suite_config_from_dict(raw: dict[str, Any]) -> SuiteConfig:
    if not isinstance(raw, dict):
        raise ConfigError("suite configuration must be a JSON object")
    try:
        operations = [_operation_from_dict(item) for item in raw.get("operations", [])]
        targets = [_target_from_dict(item) for item in raw.get("targets", [])]
        config = SuiteConfig(
            operations=operations,
            concurrency_levels=[
                int(level)
                for level in raw.get("concurrency_levels", DEFAULT_CONCURRENCY_LEVELS)
            ],
            targets=targets,
            iterations=int(raw.get("iterations", 100)),
            warmup_iterations=int(raw.get("warmup_iterations", 10)),
            call_timeout_s=float(raw.get("call_timeout_s", 5.0)),
            scenario_timeout_s=_optional_float(raw.get("scenario_timeout_s", 600.0)),
            grace_s=float(raw.get("grace_s", 5.0)),
            profile_timeout_s=float(raw.get("profile_timeout_s", 60.0)),
        )
    except ConfigError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid suite configuration: {exc!r}") from exc
    return config.validate()


def _operation_from_dict(item: dict[str, Any]) -> OperationSpec:
    name = str(item["name"])
    kind = str(item.get("kind", "http"))
    if kind == "callable":
        raise ConfigError(
            f"operation {name!r}: callable operations need an invoker factory "
            "and cannot be loaded from a plan file"
        )
    return OperationSpec(
        name=name,
        kind=kind,
        path=str(item.get("path", "")),
        method=str(item.get("method", "POST")).upper(),
        payload=item.get("payload"),
        command=tuple(str(part) for part in item.get("command", ())),
        headers={str(k): str(v) for k, v in item.get("headers", {}).items()},
    )


def _target_from_dict(item: dict[str, Any]) -> TargetVariant:
    return TargetVariant(
        label=str(item["label"]),
        kind=str(item.get("kind", "external")),
        endpoint=item.get("endpoint"),
        command=tuple(str(part) for part in item.get("command", ())),
        image=item.get("image"),
        environment={str(k): str(v) for k, v in item.get("environment", {}).items()},
        ports={str(k): int(v) for k, v in item.get("ports", {}).items()},
        networks=tuple(str(name) for name in item.get("networks", ())),
        health_path=str(item.get("health_path", "/health")),
        readiness_attempts=int(item.get("readiness_attempts", 30)),
        readiness_interval_s=float(item.get("readiness_interval_s", 1.0)),
        profile_urls={str(k): str(v) for k, v in item.get("profile_urls", {}).items()},
    )


def _validate_target(target: TargetVariant) -> None:
    if target.kind not in TARGET_KINDS:
        raise ConfigError(f"target {target.label!r}: unknown kind {target.kind!r}")
    if target.kind in {"external", "process", "docker"} and not target.endpoint:
        raise ConfigError(f"target {target.label!r}: endpoint is required")
    if target.kind == "process" and not target.command:
        raise ConfigError(f"target {target.label!r}: command is required")
    if target.kind == "docker" and not target.image:
        raise ConfigError(f"target {target.label!r}: image is required")
    if target.readiness_attempts < 1:
        raise ConfigError(f"target {target.label!r}: readiness_attempts must be >= 1")
    for name, url in target.profile_urls.items():
        if not name or not url:
            raise ConfigError(f"target {target.label!r}: profile URLs need a name and a URL")


def _ensure_unique(what: str, values: Sequence[str]) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            raise ConfigError(f"duplicate {what} {value!r}")
        seen.add(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


__all__ = [
    "DEFAULT_TARGET_URL",
    "SuiteConfig",
    "TargetVariant",
    "default_suite_config",
    "load_suite_config",
    "suite_config_from_dict",
]
