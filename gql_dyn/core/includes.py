"""Include specs: what to select below an entity.

Callers write includes as plain Python values::

    ["*", "!secrets", {"posts|id title|fragment": ["comments"]},
     {"friends": {"$": {"first": 10}, "$name": "topFriends"}}]

A bare name, or a name mapped to None/True, selects the relation with
its default fields; a name mapped to False excludes it, like ``!name``.

parse_include() turns that into a tuple of typed entries (Wildcard,
Exclude, Keyed) so the query builder never has to inspect raw shapes.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import MalformedIncludeError


WILDCARD = "*"
EXCLUDE_PREFIX = "!"
KEY_SEPARATOR = "|"
FRAGMENT_MARKER = "fragment"
ARGS_KEY = "$"
ALIAS_KEY = "$name"


@dataclass(frozen=True)
class Wildcard:
    """``*`` or ``*|fragment``: every relation not named by a sibling entry."""
    as_fragment: bool = False


@dataclass(frozen=True)
class Exclude:
    """``!name`` or ``{name: False}``: never selects, and keeps the relation out of wildcard expansion."""
    name: str


@dataclass(frozen=True)
class MalformedInclude:
    """A nested include value of an unsupported shape; selects nothing."""
    value: Any


@dataclass(frozen=True, eq=False)
class Keyed:
    """One explicitly selected relation.

    Compared and hashed by identity: the query builder binds ``$``
    arguments per entry object, so the selection pass and the fragment
    pass over the same parsed tree produce the same variable names.
    """
    relation: str
    alias: str | None = None
    field_override: str | None = None
    as_fragment: bool = False
    nested: Union[tuple["IncludeEntry", ...], MalformedInclude, None] = None
    arg_bindings: Mapping[str, Any] = field(default_factory=dict)

    @property
    def output_name(self) -> str:
        if self.alias:
            return f"{self.alias}: {self.relation}"
        return self.relation


IncludeEntry = Union[Wildcard, Exclude, Keyed]
IncludeSpec = tuple[IncludeEntry, ...]


def parse_include(value: Any) -> IncludeSpec | None:
    """Parse a raw include value.

    Returns None when there is nothing to include (None, False, True).

    Raises:
        MalformedIncludeError: If the value (or a list item) has an unsupported shape
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return (_parse_string(value),)
    if isinstance(value, Mapping):
        return tuple(_parse_mapping(value))
    if isinstance(value, (list, tuple)):
        entries: list[IncludeEntry] = []
        for item in value:
            if isinstance(item, str):
                entries.append(_parse_string(item))
            elif isinstance(item, Mapping):
                entries.extend(_parse_mapping(item))
            else:
                raise MalformedIncludeError(item)
        return tuple(entries)
    raise MalformedIncludeError(value)


def referenced_names(spec: IncludeSpec) -> set[str]:
    """Relation names mentioned explicitly (selected or excluded) in a sibling list."""
    names = set()
    for entry in spec:
        if isinstance(entry, Exclude):
            names.add(entry.name)
        elif isinstance(entry, Keyed):
            names.add(entry.relation)
    return names


def _parse_string(text: str) -> IncludeEntry:
    if text == WILDCARD:
        return Wildcard()
    if text == f"{WILDCARD}{KEY_SEPARATOR}{FRAGMENT_MARKER}":
        return Wildcard(as_fragment=True)
    if text.startswith(EXCLUDE_PREFIX):
        return Exclude(text[len(EXCLUDE_PREFIX):].split(KEY_SEPARATOR)[0])
    return _parse_key(text, None)


def _parse_mapping(mapping: Mapping) -> list[IncludeEntry]:
    entries = []
    for key, value in mapping.items():
        if not isinstance(key, str):
            raise MalformedIncludeError(mapping)
        # Control keys only mean something inside a relation's value
        if key in (ARGS_KEY, ALIAS_KEY):
            continue
        if value is False:
            # {name: False} switches a relation off, like "!name"
            entries.append(Exclude(key.split(KEY_SEPARATOR)[0]))
        else:
            entries.append(_parse_key(key, value))
    return entries


def _parse_key(key: str, value: Any) -> Keyed:
    """Parse ``relation[|fields][|fragment]`` plus its nested value."""
    relation, *modifiers = key.split(KEY_SEPARATOR)
    as_fragment = False
    field_override = None
    for modifier in modifiers:
        if modifier == FRAGMENT_MARKER:
            as_fragment = True
        elif modifier.strip():
            field_override = modifier.strip()

    alias = None
    bindings: Mapping[str, Any] = {}
    nested_value = value
    if isinstance(value, Mapping):
        raw_bindings = value.get(ARGS_KEY) or {}
        alias = value.get(ALIAS_KEY)
        nested_value = {k: v for k, v in value.items() if k not in (ARGS_KEY, ALIAS_KEY)} or None
        if not isinstance(raw_bindings, Mapping):
            return Keyed(
                relation=relation,
                alias=alias,
                field_override=field_override,
                as_fragment=as_fragment,
                nested=MalformedInclude(raw_bindings),
            )
        bindings = dict(raw_bindings)

    try:
        nested = parse_include(nested_value)
    except MalformedIncludeError as e:
        nested = MalformedInclude(e.value)

    return Keyed(
        relation=relation,
        alias=alias,
        field_override=field_override,
        as_fragment=as_fragment,
        nested=nested,
        arg_bindings=bindings,
    )
