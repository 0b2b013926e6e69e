from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

EvaluationContext = Mapping[str, Any]

EMPTY_CONTEXT_FINGERPRINT = "-"

_JSON_SCALARS = (str, int, float, bool, type(None))


def freeze_value(value: Any) -> Any:
    """Normalize containers so equal data compares equal regardless of container type.

    Lists and tuples become tuples, sets become frozensets and mappings become
    dicts of frozen values. Scalars are returned unchanged.
    """

    if isinstance(value, Mapping):
        return {key: freeze_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze_value(item) for item in value)
    return value


def _canonical(value: Any) -> list[Any]:
    # Every node carries a type tag so values that conditions tell apart never share a digest.
    if isinstance(value, Mapping):
        items = sorted(([_canonical(key), _canonical(item)] for key, item in value.items()), key=_encode)
        return ["map", items]
    if isinstance(value, (list, tuple)):
        return ["seq", [_canonical(item) for item in value]]
    if isinstance(value, (set, frozenset)):
        return ["set", sorted((_canonical(item) for item in value), key=_encode)]
    kind = type(value)
    if isinstance(value, _JSON_SCALARS) and kind in _JSON_SCALARS:
        return [kind.__name__, value]
    return [f"{kind.__module__}.{kind.__qualname__}", repr(value)]


def _encode(node: Any) -> str:
    return json.dumps(node, separators=(",", ":"), allow_nan=True)


def context_fingerprint(context: EvaluationContext | None) -> str:
    """Stable, key-order independent digest of exactly what conditions will see."""

    if not context:
        return EMPTY_CONTEXT_FINGERPRINT
    encoded = _encode(_canonical(freeze_value(context)))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def build_namespace(user_id: str, context: EvaluationContext | None) -> dict[str, Any]:
    return {"user_id": user_id, "context": freeze_value(dict(context or {}))}
