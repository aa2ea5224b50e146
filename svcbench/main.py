from __future__ import annotations

import argparse
import collections
import os
import sys
from typing import Iterable

from .benchmarks.config import DEFAULT_TARGET_URL, load_suite_config
from .benchmarks.errors import ConfigError
from .operations import HttpInvoker, OperationSpec, build_operations

ITERATIONS_DEFAULT = 3
CALL_TIMEOUT_DEFAULT = 5.0


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Smoke-check a running target before a suite")
    parser.add_argument("--target-url", help="Endpoint of the running target")
    parser.add_argument(
        "--plan-path",
        help="Suite configuration whose HTTP operations should be checked",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        help="Invocations per operation",
    )
    parser.add_argument(
        "--call-timeout",
        type=float,
        help="Per-operation timeout in seconds",
    )
    return parser.parse_args(argv)


def verify(
    invoker: HttpInvoker,
    operations: Iterable[OperationSpec],
    iterations: int,
) -> tuple[collections.Counter[str], collections.Counter[str], dict[str, str]]:
    """Invoke each operation ``iterations`` times and count the outcomes."""

    attempted: collections.Counter[str] = collections.Counter()
    succeeded: collections.Counter[str] = collections.Counter()
    last_errors: dict[str, str] = {}
    for operation in operations:
        for _ in range(iterations):
            attempted[operation.name] += 1
            result = invoker.invoke(operation)
            if result.ok:
                succeeded[operation.name] += 1
            elif result.error:
                last_errors[operation.name] = result.error
    return attempted, succeeded, last_errors


def run(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    env = os.environ

    target_url = args.target_url or env.get("BENCHMARK_TARGET_URL", DEFAULT_TARGET_URL)
    plan_path = args.plan_path or env.get("BENCHMARK_PLAN_PATH")

    iterations = args.iterations
    if iterations is None:
        iterations_str = env.get("VERIFY_ITERATIONS", str(ITERATIONS_DEFAULT))
        try:
            iterations = int(iterations_str)
            if iterations <= 0:
                raise ValueError("non-positive iterations")
        except ValueError:
            print(
                f"invalid VERIFY_ITERATIONS value {iterations_str!r}; "
                f"defaulting to {ITERATIONS_DEFAULT}",
                file=sys.stderr,
            )
            iterations = ITERATIONS_DEFAULT

    call_timeout = args.call_timeout
    if call_timeout is None:
        call_timeout_str = env.get("BENCHMARK_CALL_TIMEOUT", str(CALL_TIMEOUT_DEFAULT))
        try:
            call_timeout = float(call_timeout_str)
        except ValueError:
            print(
                f"invalid BENCHMARK_CALL_TIMEOUT value {call_timeout_str!r}; "
                f"defaulting to {CALL_TIMEOUT_DEFAULT}",
                file=sys.stderr,
            )
            call_timeout = CALL_TIMEOUT_DEFAULT

    if plan_path:
        try:
            operations = load_suite_config(plan_path).operations
        except ConfigError as exc:
            print(f"invalid benchmark plan: {exc}", file=sys.stderr)
            return 2
    else:
        operations = build_operations()
    operations = [operation for operation in operations if operation.kind == "http"]
    if not operations:
        print("no HTTP operations to verify", file=sys.stderr)
        return 2

    invoker = HttpInvoker(target_url, timeout_s=call_timeout)
    try:
        attempted, succeeded, last_errors = verify(invoker, operations, iterations)
    finally:
        invoker.close()

    print(f"Target: {target_url}")
    print("Attempted counts:")
    for name in sorted(attempted):
        print(f"  {name}: {attempted[name]}")
    print("Succeeded counts:")
    for name in sorted(succeeded):
        print(f"  {name}: {succeeded[name]}")

    mismatches = {
        name: count - succeeded.get(name, 0)
        for name, count in attempted.items()
        if succeeded.get(name, 0) != count
    }

    if mismatches:
        print("\nVerification status: MISMATCH", file=sys.stderr)
        print("  failed invocations:", file=sys.stderr)
        for name, failed in sorted(mismatches.items()):
            detail = f" (last error: {last_errors[name]})" if name in last_errors else ""
            print(f"    {name}: {failed}/{attempted[name]}{detail}", file=sys.stderr)
        return 1

    print("\nVerification status: OK", file=sys.stderr)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
