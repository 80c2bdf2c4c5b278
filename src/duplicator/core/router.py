from __future__ import annotations

from duplicator.audit.events import NullEventLog
from duplicator.core.models import DIRECTIVE_API_VERSION, DIRECTIVE_KIND, Directive, Namespace, ObjectKey
from duplicator.core.selector import matches
from duplicator.store.base import ChangeEvent, ObjectStore, StoreError, describe_store_error


def route_namespace_event(store: ObjectStore, event: ChangeEvent, events: object | None = None) -> list[ObjectKey]:
    """Directives to reconcile after a namespace changed.

    A namespace on its way out yields nothing. Otherwise every directive whose
    selector matches the current labels is returned, plus those that matched
    the previous labels so their stale replicas get pruned.
    """
    log = events or NullEventLog()
    if event.type == "DELETED" or event.deletion_requested:
        return []
    namespace = Namespace.from_object(event.object)
    previous = Namespace.from_object(event.old_object) if event.old_object else None

    try:
        directives = store.list(DIRECTIVE_KIND, api_version=DIRECTIVE_API_VERSION)
    except StoreError as exc:
        log.emit("router_error", {"namespace": namespace.name, "error": describe_store_error(exc)})
        return []

    keys: list[ObjectKey] = []
    for body in directives:
        directive = Directive.from_object(body)
        hit = matches(directive.selector, namespace.labels)
        if not hit and previous is not None:
            hit = matches(directive.selector, previous.labels)
        if hit and directive.key not in keys:
            keys.append(directive.key)
            log.emit("router_enqueue", {"namespace": namespace.name, "directive": str(directive.key)})
    return keys
