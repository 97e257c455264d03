"""Provenance-tagged parameter trees.

Requests and templates thread their state through a tree of
``ParameterNode`` / ``ParameterLeaf`` values. Every value remembers where it
came from (query string, request body, derived by the core, ...) so that an
overwrite can be logged with the value it replaced.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .models import ParameterLeaf, ParameterNode, ParameterSource, ParameterValue

log = logging.getLogger(__name__)


def empty_params(source: ParameterSource = ParameterSource.DERIVED) -> ParameterNode:
    return ParameterNode(children={}, source=source)


def _split(path: str) -> list[str]:
    return [part for part in path.split(".") if part]


def _to_value(value: Any, source: ParameterSource) -> ParameterValue:
    if isinstance(value, (ParameterLeaf, ParameterNode)):
        return value
    if isinstance(value, Mapping):
        return ParameterNode(
            children={str(k): _to_value(v, source) for k, v in value.items()},
            source=source,
        )
    return ParameterLeaf(value=value, source=source)


def params_from_mapping(data: Mapping[str, Any], source: ParameterSource) -> ParameterNode:
    """Build a parameter tree from a (possibly nested) mapping.

    Keys containing dots are expanded into nested nodes, so a query string
    ``?page.title=x`` becomes ``{"page": {"title": "x"}}``.
    """
    root = empty_params(source)
    for key, value in data.items():
        if not _split(str(key)):
            log.debug("Ignoring parameter with empty name %r", key)
            continue
        set_param(root, str(key), value, source)
    return root


def lookup(root: ParameterNode, path: str) -> ParameterValue | None:
    """Return the raw tree value at a dotted path, or None if any segment is missing."""
    node: ParameterValue = root
    for part in _split(path):
        if not isinstance(node, ParameterNode):
            return None
        child = node.children.get(part)
        if child is None:
            return None
        node = child
    return node


def _coerce(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def get_param(root: ParameterNode, path: str) -> str | None:
    """Dotted-path lookup returning the string-coerced leaf value.

    Never raises: a missing segment, or a path that ends on a group rather
    than a leaf, yields None.
    """
    value = lookup(root, path)
    if isinstance(value, ParameterLeaf):
        return _coerce(value.value)
    return None


def has_param(root: ParameterNode, path: str) -> bool:
    return lookup(root, path) is not None


def set_param(
    root: ParameterNode,
    path: str,
    value: Any,
    source: ParameterSource,
) -> ParameterNode:
    """Set a value at a dotted path, creating groups as needed.

    Overwriting an existing value is allowed; the prior value and its source
    are logged.
    """
    parts = _split(path)
    if not parts:
        raise ValueError("Parameter path must not be empty")

    node = root
    for part in parts[:-1]:
        child = node.children.get(part)
        if not isinstance(child, ParameterNode):
            if child is not None:
                log.debug(
                    "Parameter %s: replacing value %r (%s) with a group",
                    path,
                    child.value,
                    child.source.value,
                )
            child = ParameterNode(children={}, source=source)
            node.children[part] = child
        node = child

    key = parts[-1]
    previous = node.children.get(key)
    if previous is not None:
        prior = previous.value if isinstance(previous, ParameterLeaf) else to_plain(previous)
        log.debug(
            "Parameter %s overwritten: %r (%s) -> %r (%s)",
            path,
            prior,
            previous.source.value,
            value,
            source.value,
        )
    node.children[key] = _to_value(value, source)
    return root


def merge_params(base: ParameterNode, overlay: ParameterNode) -> ParameterNode:
    """Return a new tree with ``overlay`` applied on top of a copy of ``base``."""
    merged = base.model_copy(deep=True)
    _merge_into(merged, overlay, prefix="")
    return merged


def _merge_into(target: ParameterNode, overlay: ParameterNode, prefix: str) -> None:
    for key, value in overlay.children.items():
        path = f"{prefix}{key}"
        existing = target.children.get(key)
        if isinstance(value, ParameterNode) and isinstance(existing, ParameterNode):
            _merge_into(existing, value, prefix=f"{path}.")
        else:
            set_param(target, key, value.model_copy(deep=True), value.source)


def to_plain(value: ParameterValue) -> Any:
    """Strip provenance, returning plain dicts and leaf values."""
    if isinstance(value, ParameterLeaf):
        return value.value
    return {key: to_plain(child) for key, child in value.children.items()}
