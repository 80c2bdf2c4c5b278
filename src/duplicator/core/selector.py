"""Label-equality namespace selection."""

from __future__ import annotations


def matches(selector: object, labels: object) -> bool:
    """Return True when every selector label is present in ``labels`` with an equal value.

    An empty selector matches every namespace. Non-mapping inputs are treated
    as empty, so the predicate never raises.
    """
    if not isinstance(selector, dict) or not selector:
        return True
    if not isinstance(labels, dict):
        return False
    for key, value in selector.items():
        if key not in labels or labels[key] != value:
            return False
    return True


def format_label_selector(selector: dict[str, str] | None) -> str:
    if not selector:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
