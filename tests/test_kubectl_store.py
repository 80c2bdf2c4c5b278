import json
from pathlib import Path

import pytest

from duplicator.core.models import DIRECTIVE_KIND, NAMESPACE_KIND
from duplicator.kinds import default_registry
from duplicator.store.base import Conflict, Forbidden, NotFound, StoreUnavailable
from duplicator.store.kubectl import KubectlStore, classify_kubectl_failure, run_cmd
from k8s_objects import configmap


def _fake_kubectl(tmp_path: Path, body: str) -> tuple[Path, Path]:
    log = tmp_path / "kubectl.log"
    kubectl = tmp_path / "kubectl"
    kubectl.write_text(
        f"""#!/usr/bin/env bash
set -Eeuo pipefail
echo "$*" >> "{log}"
{body}
""",
        encoding="utf-8",
    )
    kubectl.chmod(0o755)
    return kubectl, log


def _calls(log: Path) -> list[str]:
    return log.read_text(encoding="utf-8").splitlines()


def test_get_builds_namespaced_command(tmp_path: Path) -> None:
    payload = json.dumps(configmap("ns-a", "cfg", {"k": "v"}))
    kubectl, log = _fake_kubectl(tmp_path, f"echo '{payload}'")

    obj = KubectlStore(str(kubectl), context="dev").get("ConfigMap", "ns-a", "cfg")

    assert obj["data"] == {"k": "v"}
    assert _calls(log) == ["--context dev get configmaps cfg -o json -n ns-a"]


def test_list_uses_all_namespaces_and_label_selector(tmp_path: Path) -> None:
    payload = json.dumps({"items": [{"metadata": {"namespace": "ns-a", "name": "cfg"}}]})
    kubectl, log = _fake_kubectl(tmp_path, f"echo '{payload}'")
    store = KubectlStore(str(kubectl))

    items = store.list("ConfigMap", {"b": "2", "a": "1"})
    store.list(NAMESPACE_KIND, {"env": "staging"})
    store.list(DIRECTIVE_KIND, namespace="ops")

    assert items == [{"kind": "ConfigMap", "metadata": {"namespace": "ns-a", "name": "cfg"}}]
    assert _calls(log) == [
        "get configmaps -o json -A -l a=1,b=2",
        "get namespaces -o json -l env=staging",
        "get duplicators.v1.syoze.syoze.fr -o json -n ops",
    ]


def test_writes_send_the_object_on_stdin(tmp_path: Path) -> None:
    stdin_copy = tmp_path / "stdin.json"
    kubectl, log = _fake_kubectl(tmp_path, f'cat > "{stdin_copy}"\ncat "{stdin_copy}"')
    store = KubectlStore(str(kubectl))
    obj = configmap("ns-a", "cfg", {"k": "v"})

    created = store.create(obj)
    store.update(obj)
    store.update_status(obj)

    assert created == obj
    assert json.loads(stdin_copy.read_text(encoding="utf-8")) == obj
    assert _calls(log) == [
        "create -f - -o json",
        "replace -f - -o json",
        "replace --subresource=status -f - -o json",
    ]


def test_delete_does_not_wait(tmp_path: Path) -> None:
    kubectl, log = _fake_kubectl(tmp_path, "exit 0")

    KubectlStore(str(kubectl)).delete("Secret", "ns-a", "creds")

    assert _calls(log) == ["delete secrets creds --wait=false -n ns-a"]


def test_generic_kind_uses_qualified_resource(tmp_path: Path) -> None:
    kubectl, log = _fake_kubectl(tmp_path, "exit 0")
    store = KubectlStore(str(kubectl), registry=default_registry(allow_generic=True))

    store.delete("Deployment", "ns-a", "web", api_version="apps/v1")

    assert _calls(log) == ["delete Deployment.v1.apps web --wait=false -n ns-a"]


@pytest.mark.parametrize(
    ("stderr", "error"),
    [
        ('Error from server (NotFound): configmaps "cfg" not found', NotFound),
        ('Error from server (AlreadyExists): configmaps "cfg" already exists', Conflict),
        (
            "Error from server (Conflict): Operation cannot be fulfilled on configmaps \"cfg\": "
            "the object has been modified; please apply your changes to the latest version and try again",
            Conflict,
        ),
        ("The connection to the server localhost:8080 was refused", StoreUnavailable),
    ],
)
def test_failures_map_to_store_errors(tmp_path: Path, stderr: str, error: type) -> None:
    kubectl, _ = _fake_kubectl(tmp_path, f"echo '{stderr}' >&2\nexit 1")

    with pytest.raises(error) as exc_info:
        KubectlStore(str(kubectl)).get("ConfigMap", "ns-a", "cfg")

    assert exc_info.value.kind == "ConfigMap"
    assert "rc=1" in (exc_info.value.detail or "")


def test_forbidden_carries_rbac_diagnostics(tmp_path: Path) -> None:
    stderr = (
        'Error from server (Forbidden): configmaps "cfg" is forbidden: User "dev" cannot get resource '
        '"configmaps" in API group "" in the namespace "ns-a"'
    )
    kubectl, _ = _fake_kubectl(tmp_path, f"echo '{stderr}' >&2\nexit 1")

    with pytest.raises(Forbidden) as exc_info:
        KubectlStore(str(kubectl)).get("ConfigMap", "ns-a", "cfg")

    assert exc_info.value.diagnostics["verb"] == "get"
    assert exc_info.value.diagnostics["namespace"] == "ns-a"


def test_invalid_json_is_unavailable(tmp_path: Path) -> None:
    kubectl, _ = _fake_kubectl(tmp_path, "echo 'not json'")

    with pytest.raises(StoreUnavailable):
        KubectlStore(str(kubectl)).get("ConfigMap", "ns-a", "cfg")


def test_missing_kubectl_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(StoreUnavailable):
        KubectlStore(str(tmp_path / "nope" / "kubectl")).list(NAMESPACE_KIND)


def test_run_cmd_reports_timeout(tmp_path: Path) -> None:
    kubectl, _ = _fake_kubectl(tmp_path, "exec sleep 5")

    result = run_cmd([str(kubectl)], timeout_s=0.2)

    assert result["ok"] is False
    assert result["error"] == "timeout"
    assert classify_kubectl_failure(result) == "timeout"
    assert classify_kubectl_failure({"error": "not_found"}) == "kubectl_missing"


def test_watch_diffs_successive_listings(tmp_path: Path) -> None:
    state = tmp_path / "state.json"
    kubectl, _ = _fake_kubectl(tmp_path, f'cat "{state}"')
    store = KubectlStore(str(kubectl))

    def _items(*specs: tuple[str, str]) -> None:
        items = [
            {"kind": "Namespace", "metadata": {"name": name, "resourceVersion": rv}}
            for name, rv in specs
        ]
        state.write_text(json.dumps({"items": items}), encoding="utf-8")

    _items(("ns-a", "1"), ("ns-b", "1"))
    assert [e.type for e in store.watch(NAMESPACE_KIND)] == ["ADDED", "ADDED"]

    _items(("ns-a", "2"), ("ns-c", "1"))
    events = store.watch(NAMESPACE_KIND)
    assert [(e.type, e.object["metadata"]["name"]) for e in events] == [
        ("MODIFIED", "ns-a"),
        ("ADDED", "ns-c"),
        ("DELETED", "ns-b"),
    ]
    assert events[0].old_object["metadata"]["resourceVersion"] == "1"

    assert store.watch(NAMESPACE_KIND) == []
