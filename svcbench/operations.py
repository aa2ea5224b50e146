from __future__ import annotations

import copy
import json
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple

import requests

OPERATION_KINDS: tuple[str, ...] = ("http", "command", "callable")

RBAC_INPUT: dict[str, object] = {
    "input": {
        "user": {"id": "user_001", "role": "admin"},
        "action": "delete",
        "resource": {"owner": "user_002"},
    }
}

API_INPUT: dict[str, object] = {
    "input": {
        "user": {
            "id": "user_001",
            "token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.eyJzdWIiOiJ1c2VyXzAwMSJ9.sig",
            "permissions": ["users:read"],
            "tier": "premium",
            "department": "engineering",
        },
        "method": "GET",
        "path": "/api/users",
        "client_ip": "192.168.1.1",
    }
}

FINANCIAL_INPUT: dict[str, object] = {
    "input": {
        "loan_application": {
            "amount": 500_000,
            "monthly_payment": 3_200,
            "collateral_value": 750_000,
            "collateral_type": "residential_property",
            "applicant": {
                "id": "applicant_001",
                "country": "US",
                "monthly_income": 12_000,
                "total_monthly_debt": 4_500,
                "credit_scores": {"experian": 780, "equifax": 775, "transunion": 785},
                "employment": {
                    "industry": "technology",
                    "title": "Senior Engineer",
                    "tenure_months": 48,
                    "verified": True,
                    "income_verified": True,
                },
                "payment_history": [{"days_late": 0}, {"days_late": 0}, {"days_late": 0}],
            },
        }
    }
}

OPERATION_CONFIG: dict[str, dict[str, object]] = {
    "Simple RBAC": {"path": "v1/data/rbac/allow", "payload": RBAC_INPUT},
    "API Authorization": {"path": "v1/data/api/authz/allow", "payload": API_INPUT},
    "Financial Risk Assessment": {
        "path": "v1/data/finance/risk/approve_loan",
        "payload": FINANCIAL_INPUT,
    },
}


@dataclass(frozen=True)
class OperationSpec:
    """Opaque description of one unit of load.

    ``kind`` selects the invoker: ``http`` sends ``payload`` to ``path`` on the
    target endpoint, ``command`` runs ``command`` with the payload on stdin and
    ``callable`` hands the operation to an in-process function.
    """

    name: str
    kind: str = "http"
    path: str = ""
    method: str = "POST"
    payload: Any = field(default=None, hash=False)
    command: tuple[str, ...] = ()
    headers: dict[str, str] = field(default_factory=dict, hash=False)

    def url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/{self.path.lstrip('/')}"

    def payload_bytes(self) -> bytes | None:
        if self.payload is None:
            return None
        if isinstance(self.payload, bytes):
            return self.payload
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return json.dumps(self.payload).encode("utf-8")

    def render_command(self, endpoint: str | None) -> list[str]:
        if endpoint is None:
            return list(self.command)
        return [part.replace("{endpoint}", endpoint) for part in self.command]


class Invocation(NamedTuple):
    elapsed_ms: float
    ok: bool
    error: str | None = None


class Invoker:
    """Issues exactly one operation against the target per ``invoke`` call.

    Implementations never raise for target-side failures; they report them
    as ``ok=False`` with the elapsed time still measured.
    """

    def invoke(self, operation: OperationSpec) -> Invocation:
        raise NotImplementedError

    def close(self) -> None:
        return None


class HttpInvoker(Invoker):
    """Sends operations over HTTP using one ``requests.Session`` per worker thread."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout_s = timeout_s
        self._headers = {"Content-Type": "application/json"}
        self._headers.update(headers or {})
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return self._base_url

    def invoke(self, operation: OperationSpec) -> Invocation:
        session = self._session()
        headers = dict(self._headers)
        headers.update(operation.headers)
        body = operation.payload_bytes()

        started = time.perf_counter()
        try:
            response = session.request(
                operation.method,
                operation.url(self._base_url),
                data=body,
                headers=headers,
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            return Invocation(elapsed_ms, False, type(exc).__name__)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        if 200 <= response.status_code < 300:
            return Invocation(elapsed_ms, True)
        return Invocation(elapsed_ms, False, f"HTTP {response.status_code}")

    def close(self) -> None:
        with self._sessions_lock:
            sessions = list(self._sessions)
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session


class CommandInvoker(Invoker):
    """Runs one subprocess per operation, feeding the payload on stdin."""

    def __init__(self, timeout_s: float = 5.0, endpoint: str | None = None) -> None:
        self._timeout_s = timeout_s
        self._endpoint = endpoint

    def invoke(self, operation: OperationSpec) -> Invocation:
        args = operation.render_command(self._endpoint)
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                args,
                input=operation.payload_bytes(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self._timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            return Invocation(elapsed_ms, False, "timeout")
        except OSError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            return Invocation(elapsed_ms, False, f"{type(exc).__name__}: {exc}")
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        if completed.returncode == 0:
            return Invocation(elapsed_ms, True)
        return Invocation(elapsed_ms, False, f"exit code {completed.returncode}")


class CallableInvoker(Invoker):
    """Calls an in-process function. A falsy return value or an exception is a failure.

    No per-call timeout can be enforced in-process; callers own that bound.
    """

    def __init__(self, func: Callable[[OperationSpec], object]) -> None:
        self._func = func

    def invoke(self, operation: OperationSpec) -> Invocation:
        started = time.perf_counter()
        try:
            outcome = self._func(operation)
        except Exception as exc:  # noqa: BLE001
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            return Invocation(elapsed_ms, False, f"{type(exc).__name__}: {exc}")
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        ok = True if outcome is None else bool(outcome)
        return Invocation(elapsed_ms, ok, None if ok else "operation reported failure")


def build_invoker(
    operation: OperationSpec,
    endpoint: str | None,
    timeout_s: float,
    callables: dict[str, Callable[[OperationSpec], object]] | None = None,
) -> Invoker:
    """Return the invoker matching ``operation.kind`` bound to ``endpoint``."""

    if operation.kind == "http":
        if not endpoint:
            raise ValueError(f"operation {operation.name!r} needs a target endpoint")
        return HttpInvoker(endpoint, timeout_s=timeout_s)
    if operation.kind == "command":
        return CommandInvoker(timeout_s=timeout_s, endpoint=endpoint)
    if operation.kind == "callable":
        func = (callables or {}).get(operation.name)
        if func is None:
            raise ValueError(f"no in-process callable registered for {operation.name!r}")
        return CallableInvoker(func)
    raise ValueError(f"unknown operation kind {operation.kind!r}")


def build_operations() -> list[OperationSpec]:
    operations: list[OperationSpec] = []
    for name, config in OPERATION_CONFIG.items():
        operations.append(
            OperationSpec(
                name=name,
                kind="http",
                path=str(config["path"]),
                payload=copy.deepcopy(config["payload"]),
            )
        )
    return operations


__all__ = [
    "OPERATION_KINDS",
    "CallableInvoker",
    "CommandInvoker",
    "HttpInvoker",
    "Invocation",
    "Invoker",
    "OperationSpec",
    "build_invoker",
    "build_operations",
]
