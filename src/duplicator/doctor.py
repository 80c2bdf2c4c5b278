"""Prerequisite checks for running the controller against a cluster."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path

from duplicator.kinds import KindRegistry
from duplicator.store.kubectl import run_cmd

CRD_NAME = "duplicators.syoze.syoze.fr"


def parse_auth_can_i_answer(stdout: str) -> bool | None:
    text = (stdout or "").strip()
    if not text:
        return None

    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        status = payload.get("status") if isinstance(payload, dict) else None
        allowed = status.get("allowed") if isinstance(status, dict) else None
        return allowed if isinstance(allowed, bool) else None

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    answer = lines[-1].lower()
    if answer == "yes":
        return True
    if answer == "no":
        return False
    return None


def _required_access(registry: KindRegistry) -> list[tuple[str, str, str | None]]:
    access: list[tuple[str, str, str | None]] = [
        ("list", "namespaces", None),
        ("watch", "namespaces", None),
        ("list", CRD_NAME, None),
        ("update", CRD_NAME, None),
        ("update", CRD_NAME, "status"),
    ]
    for kind in registry.list_kinds():
        strategy = registry.get(kind)
        if strategy is None:
            continue
        for verb in ("get", "list", "create", "update", "delete"):
            access.append((verb, strategy.resource, None))
    return access


def collect_doctor_checks(kubectl: str, registry: KindRegistry, *, timeout_s: float = 20.0) -> tuple[list[dict], bool]:
    checks: list[dict] = []
    kubectl_path = shutil.which(kubectl)
    checks.append(
        {
            "label": "kubectl present",
            "ok": bool(kubectl_path),
            "hint": "Install kubectl and add it to PATH, or set KUBECTL.",
        }
    )

    kubeconfig_raw = str(os.environ.get("KUBECONFIG", "")).strip()
    kubeconfig_path = Path(kubeconfig_raw) if kubeconfig_raw else Path.home() / ".kube" / "config"
    in_cluster = bool(os.environ.get("KUBERNETES_SERVICE_HOST"))
    checks.append(
        {
            "label": f"kubeconfig readable ({kubeconfig_path})",
            "ok": in_cluster or (kubeconfig_path.is_file() and os.access(kubeconfig_path, os.R_OK)),
            "hint": "Set KUBECONFIG or ensure ~/.kube/config exists and is readable.",
        }
    )
    if not kubectl_path:
        return checks, False

    crd = run_cmd([kubectl, "get", "crd", CRD_NAME, "-o", "name"], timeout_s=timeout_s)
    checks.append(
        {
            "label": f"CRD {CRD_NAME} installed",
            "ok": bool(crd["ok"]),
            "hint": "Apply the Duplicator CustomResourceDefinition before starting the controller.",
        }
    )
    for verb, resource, subresource in _required_access(registry):
        argv = [kubectl, "auth", "can-i", verb, resource, "-A"]
        if subresource:
            argv.append(f"--subresource={subresource}")
            resource = f"{resource}/{subresource}"
        cp = run_cmd(argv, timeout_s=timeout_s)
        allowed = parse_auth_can_i_answer(cp.get("stdout") or "")
        checks.append(
            {
                "label": f"can {verb} {resource}",
                "ok": allowed is True,
                "hint": f"Grant '{verb}' on '{resource}' cluster-wide to the controller's identity.",
            }
        )
    ok = all(bool(item.get("ok")) for item in checks)
    return checks, ok
