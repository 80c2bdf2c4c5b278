from duplicator.core.duplicate import duplicate_object
from duplicator.core.models import LABEL_MANAGED, LABEL_MANAGED_BY_NAME, ObjectKey, ownership_labels
from duplicator.core.upsert import merge_replica, upsert
from duplicator.kinds import default_registry
from duplicator.store.memory import MemoryStore
from k8s_objects import configmap

OWNER = ObjectKey("ops", "D1")
CONFIGMAP = default_registry().resolve("ConfigMap")


def _stored_source() -> dict:
    s = MemoryStore()
    return s.create(configmap("source", "app-config", {"k": "v"}, labels={"app": "web", LABEL_MANAGED: "false"}))


def test_duplicate_moves_object_and_strips_identity() -> None:
    source = _stored_source()

    replica = duplicate_object(source, "ns-a", OWNER, CONFIGMAP)

    meta = replica["metadata"]
    assert meta["namespace"] == "ns-a"
    assert meta["name"] == "app-config"
    for field_name in ("resourceVersion", "uid", "creationTimestamp", "generation"):
        assert field_name not in meta
    assert replica["data"] == {"k": "v"}
    assert replica["kind"] == "ConfigMap"


def test_duplicate_ownership_labels_win_over_source_labels() -> None:
    replica = duplicate_object(_stored_source(), "ns-a", OWNER, CONFIGMAP)

    labels = replica["metadata"]["labels"]
    assert labels["app"] == "web"
    assert {k: labels[k] for k in ownership_labels(OWNER)} == ownership_labels(OWNER)


def test_duplicate_does_not_mutate_source() -> None:
    source = _stored_source()
    before = repr(source)

    duplicate_object(source, "ns-a", OWNER, CONFIGMAP)

    assert repr(source) == before


def test_merge_replica_overwrites_content_and_merges_labels() -> None:
    existing = configmap("ns-a", "app-config", {"k": "old", "gone": "x"}, labels={"team": "core"})
    existing["metadata"]["resourceVersion"] = "9"
    desired = configmap("ns-a", "app-config", {"k": "new"}, labels=ownership_labels(OWNER))

    merged = merge_replica(existing, desired, CONFIGMAP)

    assert merged["data"] == {"k": "new"}
    assert merged["metadata"]["labels"]["team"] == "core"
    assert merged["metadata"]["labels"][LABEL_MANAGED_BY_NAME] == "D1"
    assert merged["metadata"]["resourceVersion"] == "9"


def test_merge_replica_drops_content_absent_from_desired() -> None:
    existing = configmap("ns-a", "app-config", {"k": "v"})
    existing["binaryData"] = {"b": "AA=="}
    desired = configmap("ns-a", "app-config", {"k": "v"})

    merged = merge_replica(existing, desired, CONFIGMAP)

    assert "binaryData" not in merged


def test_upsert_creates_then_reports_unchanged() -> None:
    store = MemoryStore()
    desired = duplicate_object(_stored_source(), "ns-a", OWNER, CONFIGMAP)

    first = upsert(store, desired, CONFIGMAP)
    second = upsert(store, desired, CONFIGMAP)

    assert first.action == "created"
    assert second.to_dict() == {"action": "unchanged", "kind": "ConfigMap", "namespace": "ns-a", "name": "app-config"}
    assert store.writes == [("create", "ConfigMap", "ns-a", "app-config")]


def test_upsert_updates_drifted_replica() -> None:
    store = MemoryStore()
    store.create(configmap("ns-a", "app-config", {"k": "drift"}, labels={"team": "core"}))
    desired = duplicate_object(_stored_source(), "ns-a", OWNER, CONFIGMAP)

    result = upsert(store, desired, CONFIGMAP)

    assert result.action == "updated"
    stored = store.get("ConfigMap", "ns-a", "app-config")
    assert stored["data"] == {"k": "v"}
    assert stored["metadata"]["labels"]["team"] == "core"
    assert stored["metadata"]["labels"][LABEL_MANAGED] == "true"


def test_upsert_leaves_replica_of_another_directive_alone() -> None:
    store = MemoryStore()
    store.create(configmap("ns-a", "app-config", {"k": "theirs"}, labels=ownership_labels(ObjectKey("team", "D2"))))
    desired = duplicate_object(_stored_source(), "ns-a", OWNER, CONFIGMAP)

    result = upsert(store, desired, CONFIGMAP)

    assert result.to_dict() == {
        "action": "kept",
        "kind": "ConfigMap",
        "namespace": "ns-a",
        "name": "app-config",
        "reason": "foreign_owner",
    }
    assert store.get("ConfigMap", "ns-a", "app-config")["data"] == {"k": "theirs"}
    assert store.writes == [("create", "ConfigMap", "ns-a", "app-config")]
