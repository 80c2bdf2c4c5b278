"""Command-line interface for the Duplicator controller."""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path

from duplicator import __version__ as DUP_VERSION
from duplicator.audit.events import EventLog, NullEventLog
from duplicator.core.models import NAMESPACE_KIND, ObjectKey, OutcomeKind
from duplicator.core.reconciler import Reconciler
from duplicator.core.router import route_namespace_event
from duplicator.demo.runner import run_demo
from duplicator.doctor import collect_doctor_checks
from duplicator.kinds import default_registry
from duplicator.runtime.controller import Controller
from duplicator.runtime.workqueue import WorkQueue
from duplicator.store.base import ChangeEvent, StoreError, describe_store_error
from duplicator.store.kubectl import KubectlStore

_EXIT_CODES = {
    OutcomeKind.DONE: 0,
    OutcomeKind.RETRY: 1,
    OutcomeKind.FATAL: 2,
}
_DURATION_HINT = "use e.g. 1.5s, 250ms or 2m"


def _parse_duration_ms(value: str) -> int:
    raw = value
    text = value.strip().lower()
    unit = "s"
    number = text
    for suffix in ("ms", "s", "m", "h"):
        if text.endswith(suffix):
            unit = suffix
            number = text[: -len(suffix)]
            break
    if not number:
        raise argparse.ArgumentTypeError(f"invalid duration: '{raw}' ({_DURATION_HINT})")
    try:
        parsed = Decimal(number)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid duration: '{raw}' ({_DURATION_HINT})") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"invalid duration: '{raw}' ({_DURATION_HINT})")

    multipliers = {
        "ms": Decimal(1),
        "s": Decimal(1000),
        "m": Decimal(60_000),
        "h": Decimal(3_600_000),
    }
    return int(parsed * multipliers[unit])


def _parse_env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_duration_ms(name: str, default: str) -> int:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return _parse_duration_ms(default)
    try:
        return _parse_duration_ms(raw)
    except argparse.ArgumentTypeError:
        return _parse_duration_ms(default)


def _env_truthy(name: str) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if value in {"", "0", "false", "no", "off"}:
        return False
    return True


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_out_dir(out_dir: str) -> Path:
    path = Path(out_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _write_json_report(path: Path, payload: dict) -> None:
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str) + "\n",
        encoding="utf-8",
    )


def _event_log(args: argparse.Namespace):
    path = getattr(args, "events", None)
    return EventLog(Path(path)) if path else NullEventLog()


def _build_store(args: argparse.Namespace) -> KubectlStore:
    registry = default_registry(allow_generic=bool(args.allow_any_kind))
    return KubectlStore(
        args.kubectl,
        registry=registry,
        context=args.context,
        timeout_s=float(args.kubectl_timeout),
    )


def _build_reconciler(args: argparse.Namespace, events) -> Reconciler:
    store = _build_store(args)
    return Reconciler(store, registry=store.registry, events=events, prune=not args.no_prune)


def cmd_reconcile(args: argparse.Namespace) -> int:
    events = _event_log(args)
    reconciler = _build_reconciler(args, events)
    key = ObjectKey(namespace=args.namespace, name=args.name)
    outcome = reconciler.reconcile(key)
    report = {"schema_version": "reconcile.v0", "directive": str(key), **outcome.to_dict()}
    if isinstance(outcome.error, StoreError):
        report["store_error"] = describe_store_error(outcome.error)
    if args.out:
        out_dir = _ensure_out_dir(args.out)
        _write_json_report(out_dir / "reconcile_latest.json", report)
    print(f"directive={key} outcome={outcome.kind.value} results={len(outcome.results)}")
    if outcome.error is not None:
        print(f"ERROR: {outcome.error}", file=sys.stderr)
    return _EXIT_CODES[outcome.kind]


def cmd_route(args: argparse.Namespace) -> int:
    events = _event_log(args)
    store = _build_store(args)
    try:
        namespace = store.get(NAMESPACE_KIND, None, args.namespace)
    except StoreError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    for key in route_namespace_event(store, ChangeEvent("MODIFIED", namespace), events):
        print(str(key))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    events = _event_log(args)
    reconciler = _build_reconciler(args, events)
    queue = WorkQueue(max_delay_s=float(args.max_backoff_ms) / 1000.0)
    controller = Controller(reconciler=reconciler, queue=queue, events=events)
    stop_requested = False

    def _signal_handler(signum: int, _frame: object | None) -> None:
        nonlocal stop_requested
        stop_requested = True

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    def _report(iteration: int, handled: list) -> None:
        counts = {kind.value: 0 for kind in OutcomeKind}
        for _, outcome in handled:
            counts[outcome.kind.value] += 1
        print(
            " ".join(
                [
                    f"iter={iteration}",
                    f"reconciled={len(handled)}",
                    f"done={counts['done']}",
                    f"retry={counts['retry']}",
                    f"fatal={counts['fatal']}",
                    f"pending={len(queue)}",
                ]
            ),
            flush=True,
        )

    events.emit("controller_start", {"interval_ms": int(args.interval), "started_at": _utc_now().isoformat()})
    iterations = controller.run(
        interval_s=int(args.interval) / 1000.0,
        max_iterations=args.max_iterations,
        stop=lambda: stop_requested,
        on_iteration=_report,
    )
    events.emit("controller_stop", {"iterations": iterations})
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    out_dir = _ensure_out_dir(args.out)
    events = EventLog(out_dir / "events.jsonl")
    events.emit("demo_start", {"out": str(out_dir)})
    report = run_demo(events)
    _write_json_report(out_dir / "demo_latest.json", report)
    for step in report["timeline"]:
        print(f"step={step['step']} replicas={','.join(sorted(step['replicas'])) or '-'}")
    events.emit("demo_stop", {"rc": 0})
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    registry = default_registry(allow_generic=bool(args.allow_any_kind))
    checks, ok = collect_doctor_checks(args.kubectl, registry, timeout_s=float(args.kubectl_timeout))
    for check in checks:
        label = str(check.get("label") or "")
        if check.get("ok"):
            print(f"PASS {label}")
            continue
        print(f"FAIL {label}")
        print(f"  hint: {check.get('hint')}")

    if not ok:
        print("Doctor result: FAIL")
        return 2
    print("Doctor result: PASS")
    return 0


def _add_store_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kubectl",
        default=os.environ.get("KUBECTL", "kubectl"),
        help="kubectl binary (env: KUBECTL)",
    )
    parser.add_argument("--context", default=None, help="Kube context")
    parser.add_argument(
        "--kubectl-timeout",
        type=float,
        default=_parse_env_float("DUPLICATOR_KUBECTL_TIMEOUT", 20.0),
        help="Per-call kubectl timeout in seconds (env: DUPLICATOR_KUBECTL_TIMEOUT)",
    )
    parser.add_argument(
        "--allow-any-kind",
        action="store_true",
        default=_env_truthy("DUPLICATOR_ALLOW_ANY_KIND"),
        help="Duplicate kinds outside the ConfigMap/Secret registry (env: DUPLICATOR_ALLOW_ANY_KIND)",
    )


def _add_controller_args(parser: argparse.ArgumentParser) -> None:
    _add_store_args(parser)
    parser.add_argument("--events", help="Append reconcile events to this JSONL file")
    parser.add_argument(
        "--no-prune",
        action="store_true",
        help="Keep replicas in namespaces that stopped matching",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dup")
    parser.add_argument("--version", action="version", version=f"duplicator {DUP_VERSION}")

    sub = parser.add_subparsers(dest="command", required=True)

    doctor = sub.add_parser("doctor", help="Check kubectl, CRD and RBAC prerequisites")
    _add_store_args(doctor)
    doctor.set_defaults(func=cmd_doctor)

    reconcile = sub.add_parser("reconcile", help="Reconcile one Duplicator once")
    reconcile.add_argument("--namespace", required=True, help="Duplicator namespace")
    reconcile.add_argument("--name", required=True, help="Duplicator name")
    reconcile.add_argument("--out", help="Write reconcile_latest.json to this directory")
    _add_controller_args(reconcile)
    reconcile.set_defaults(func=cmd_reconcile)

    route = sub.add_parser("route", help="List the Duplicators a namespace routes to")
    route.add_argument("--namespace", required=True, help="Namespace name")
    _add_store_args(route)
    route.add_argument("--events", help="Append router events to this JSONL file")
    route.set_defaults(func=cmd_route)

    run = sub.add_parser("run", help="Run the controller loop")
    _add_controller_args(run)
    run.add_argument(
        "--interval",
        default=_env_duration_ms("DUPLICATOR_INTERVAL", "10s"),
        type=_parse_duration_ms,
        help="Resync interval (e.g. 10s, 500ms; env: DUPLICATOR_INTERVAL)",
    )
    run.add_argument(
        "--max-backoff",
        dest="max_backoff_ms",
        default=_env_duration_ms("DUPLICATOR_MAX_BACKOFF", "60s"),
        type=_parse_duration_ms,
        help="Retry backoff cap (env: DUPLICATOR_MAX_BACKOFF)",
    )
    run.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Stop after N iterations (default: run until stopped)",
    )
    run.set_defaults(func=cmd_run)

    demo = sub.add_parser("demo", help="Run the duplication scenarios against an in-memory store")
    demo.add_argument("--out", default="report", help="Output directory")
    demo.set_defaults(func=cmd_demo)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
