"""Cache key derivation.

A cache key is the resource type followed by the sorted ``field=value``
tokens of its resolved dependency fields::

    user~id=7
    todos~limit=20_status=open
    account            (no truthy dependency values)

Each dependency field is looked up in the field sources in a fixed
precedence order: path parameters, then request body, then query
parameters. The first truthy value wins; falsy values never contribute a
token. Sorting the tokens makes the key independent of the order the
fields were declared in and of the key order of the source mappings.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from fetchplan.models.resources import Dependency, ResourceDescriptor, ResourceType

KEY_SEPARATOR = "~"
TOKEN_SEPARATOR = "_"

Stringify = Callable[[Any], str]


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def stringify_value(value: Any, stringify: Stringify | None = None) -> str:
    """Render a dependency value as it appears in a key token."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str | int | float):
        return str(value)
    if stringify is not None:
        return stringify(value)
    return _canonical_json(value)


def _token(field: str, value: Any, stringify: Stringify | None) -> str | None:
    if not value:
        return None
    return f"{field}={stringify_value(value, stringify)}"


def _resolve(field: str, sources: Sequence[Mapping[str, Any]]) -> Any:
    for source in sources:
        value = source.get(field)
        if value:
            return value
    return None


def derive_key(
    resource_type: str,
    dependencies: Iterable[Dependency],
    sources: Sequence[Mapping[str, Any]] = (),
    *,
    query: Mapping[str, Any] | None = None,
    stringify: Stringify | None = None,
) -> str:
    """Compute the canonical cache key for a resource instance.

    Args:
        resource_type: Registered resource type name; the key prefix.
        dependencies:  Field names, or callables mapping the query source to
                       extra ``{field: value}`` pairs.
        sources:       Field sources in precedence order.
        query:         Source handed to callable dependencies. Defaults to the
                       last entry of *sources*.
        stringify:     Renders non-scalar values; canonical JSON when omitted.
    """
    if query is None:
        query = sources[-1] if sources else {}

    tokens: list[str] = []
    for dependency in dependencies:
        if callable(dependency):
            pairs = dependency(query) or {}
            tokens.extend(
                token for field, value in pairs.items() if (token := _token(str(field), value, stringify))
            )
        else:
            token = _token(dependency, _resolve(dependency, sources), stringify)
            if token:
                tokens.append(token)

    if not tokens:
        return resource_type
    return f"{resource_type}{KEY_SEPARATOR}{TOKEN_SEPARATOR.join(sorted(tokens))}"


def key_for(
    resource_type: ResourceType,
    descriptor: ResourceDescriptor,
    stringify: Stringify | None = None,
) -> str:
    """Derive the key for *descriptor* using path > data > params precedence."""
    return derive_key(
        resource_type.name,
        resource_type.dependencies,
        (descriptor.path, descriptor.data, descriptor.params),
        query=descriptor.params,
        stringify=stringify,
    )


def matches_type(key: str, resource_type: str) -> bool:
    """True if *key* belongs to *resource_type* (bare type or ``type~...``)."""
    return key == resource_type or key.startswith(f"{resource_type}{KEY_SEPARATOR}")
