"""Best-effort parsing of Kubernetes RBAC denials returned by kubectl."""

from __future__ import annotations

import re


_FORBIDDEN_PATTERN = re.compile(
    r'User\s+"(?P<user>[^"]+)"\s+cannot\s+(?P<verb>[a-z]+)\s+resource\s+"(?P<resource>[^"]+)"\s+'
    r'in\s+API\s+group\s+"(?P<api_group>[^"]*)"\s+'
    r'(?:(?:in\s+the\s+namespace\s+"(?P<namespace>[^"]+)")|(?:at\s+the\s+cluster\s+scope))',
    re.IGNORECASE,
)

_NAME_PATTERN = re.compile(r'"(?P<name>[^"]+)"\s+is forbidden:', re.IGNORECASE)

# Verbs the duplicator needs per resource, used to widen the suggested rule.
_REQUIRED_VERBS = {
    "namespaces": ["get", "list", "watch"],
    "duplicators": ["get", "list", "watch", "update", "patch"],
    "duplicators/status": ["get", "update", "patch"],
}
_REPLICA_VERBS = ["get", "list", "create", "update", "delete"]


def _suggested_verbs(resource: str, verb: str) -> list[str]:
    verbs = list(_REQUIRED_VERBS.get(resource, _REPLICA_VERBS))
    if verb not in verbs:
        verbs.append(verb)
    return verbs


def parse_forbidden(text: str) -> dict | None:
    """Turn a kubectl Forbidden error into the RBAC rule the controller is missing."""
    if not isinstance(text, str):
        return None
    raw = text.strip()
    lower = raw.lower()
    if "forbidden" not in lower or "cannot" not in lower:
        return None

    match = _FORBIDDEN_PATTERN.search(raw)
    if not match:
        return None

    namespace = match.group("namespace")
    resource = match.group("resource")
    verb = match.group("verb").lower()
    api_group = match.group("api_group")
    name_match = _NAME_PATTERN.search(raw)
    scope = "namespaced" if namespace else "cluster"
    # Replicas land in every selected namespace, so a namespaced denial still
    # needs a cluster-wide grant.
    binding = "ClusterRoleBinding"

    return {
        "user": match.group("user"),
        "verb": verb,
        "resource": resource,
        "api_group": api_group,
        "namespace": namespace,
        "name": name_match.group("name") if name_match else None,
        "scope": scope,
        "suggested_rule": {
            "apiGroups": [api_group],
            "resources": [resource],
            "verbs": _suggested_verbs(resource, verb),
        },
        "hint": (
            f'Grant a ClusterRole rule for resource "{resource}" in API group "{api_group}" '
            f'and bind it to user "{match.group("user")}" using {binding}.'
        ),
    }
