"""Query builder for GraphQL operations.

Constructs query/mutation/subscription documents from the entity catalog
and a caller-supplied include spec, with support for nested relation
arguments, aliases, extracted fragments and aliased batches.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .catalog import Catalog, RelationDescriptor
from .errors import CatalogError, MalformedIncludeError
from .includes import (
    Exclude,
    IncludeSpec,
    Keyed,
    MalformedInclude,
    Wildcard,
    parse_include,
    referenced_names,
)

logger = logging.getLogger(__name__)

OPERATION_NAME = "do"


class _Unset:
    """Marker for a variable that should not be sent at all (unlike None)."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class ParameterAccumulator:
    """Variables generated for ``$`` arguments on nested relations.

    One accumulator lives for one document (or one batch sub-operation).
    Names are ``<arg><suffix>_<n>`` with a running counter; binding the
    same include entry twice returns the name it got the first time.
    """

    def __init__(self, suffix: str = ""):
        self.suffix = suffix
        self.declarations: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._counter = 0
        self._bound: dict[tuple[Keyed, str], str] = {}

    def bind(self, entry: Keyed, arg: str, wire_type: str, value: Any) -> str:
        key = (entry, arg)
        if key in self._bound:
            return self._bound[key]
        self._counter += 1
        var_name = f"{arg}{self.suffix}_{self._counter}"
        self._bound[key] = var_name
        self.declarations[var_name] = wire_type
        self.values[var_name] = value
        return var_name

    def mark(self) -> int:
        return self._counter

    def rollback(self, mark: int):
        """Forget every variable bound since ``mark`` was taken."""
        dropped = self._counter - mark
        if dropped <= 0:
            return
        # Each new binding bumps the counter once, so they are the last ones
        for key in list(self._bound)[-dropped:]:
            var_name = self._bound.pop(key)
            del self.declarations[var_name]
            del self.values[var_name]
        self._counter = mark

    def declaration_list(self) -> list[str]:
        return [f"${name}: {wire_type}" for name, wire_type in self.declarations.items()]


class FragmentSet:
    """Fragment definitions emitted for one document, by fragment name.

    Fragments are named after their target entity plus ``suffix``; batch
    sub-operations whose fragments differ get a suffix of their own.
    """

    def __init__(self, suffix: str = ""):
        self.suffix = suffix
        self.definitions: dict[str, str] = {}

    def name_for(self, entity_name: str) -> str:
        return f"{entity_name}{self.suffix}"

    def __contains__(self, entity_name: str) -> bool:
        return self.name_for(entity_name) in self.definitions

    def add(self, entity_name: str, definition: str) -> bool:
        """Record a fragment definition. Returns False if the entity already has one."""
        if entity_name in self:
            return False
        self.definitions[self.name_for(entity_name)] = definition
        return True


def _as_spec(include: Any) -> IncludeSpec | MalformedInclude | None:
    """Accept raw includes or an already parsed spec."""
    if isinstance(include, MalformedInclude):
        return include
    if isinstance(include, tuple) and all(
        isinstance(entry, (Wildcard, Exclude, Keyed)) for entry in include
    ):
        return include
    try:
        return parse_include(include)
    except MalformedIncludeError as e:
        return MalformedInclude(e.value)


class FieldResolver:
    """Expands include specs into selection-set text for one entity."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def resolve_fields(
        self,
        entity_name: str,
        include: Any = None,
        fields: str | None = None,
        extract_fragments: bool = False,
        params: ParameterAccumulator | None = None,
        fragments: FragmentSet | None = None,
    ) -> str:
        """Resolve the selection text for an entity.

        Args:
            entity_name: Catalog entity key
            include: Raw include value or a parsed spec
            fields: Field text used instead of the entity's default fields
            extract_fragments: Collect ``fragment X on Y { ... }`` definitions
                instead of building the selection
            params: Receives variables for nested ``$`` arguments
            fragments: Fragments already emitted in this pass

        Returns:
            Selection text. An entity missing from the catalog resolves to
            its own name, meaning "leaf, no nested block".

        Raises:
            CatalogError: If the include names an undeclared relation or argument
        """
        if params is None:
            params = ParameterAccumulator()
        if fragments is None:
            fragments = FragmentSet()
        return self._resolve(
            entity_name, _as_spec(include), fields, extract_fragments, params, fragments
        )

    def _resolve(
        self,
        entity_name: str,
        spec: IncludeSpec | MalformedInclude | None,
        fields: str | None,
        extract: bool,
        params: ParameterAccumulator,
        fragments: FragmentSet,
    ) -> str:
        entity = self.catalog.entity(entity_name)
        if entity is None:
            return entity_name

        if fields:
            text = fields
        elif not extract:
            text = entity.fields_text
        else:
            text = ""

        if spec is None:
            return text
        if isinstance(spec, MalformedInclude):
            logger.warning("Ignoring malformed include under '%s': %r", entity_name, spec.value)
            return ""

        for entry in spec:
            if isinstance(entry, Wildcard):
                taken = referenced_names(spec)
                for relation_name in entity.available_relations:
                    if relation_name in taken:
                        continue
                    synthetic = Keyed(relation=relation_name, as_fragment=entry.as_fragment)
                    text += self._resolve_entry(entity_name, synthetic, extract, params, fragments)
            elif isinstance(entry, Keyed):
                text += self._resolve_entry(entity_name, entry, extract, params, fragments)
            # Exclude entries only shape wildcard expansion
        return text

    def _resolve_entry(
        self,
        entity_name: str,
        entry: Keyed,
        extract: bool,
        params: ParameterAccumulator,
        fragments: FragmentSet,
    ) -> str:
        relation = self.catalog.entities[entity_name].available_relations.get(entry.relation)
        if relation is None:
            raise CatalogError(entity_name, entry.relation)

        target_name = relation.target_entity
        target = self.catalog.entity(target_name)

        if target is None:
            # Opaque target: selected without a nested block
            if extract:
                return ""
            return f" {entry.output_name}{self._bind_arguments(entity_name, relation, entry, params)}"

        # A relation that ends up selecting nothing must not leave variables behind
        mark = params.mark()

        if entry.as_fragment:
            args_text = "" if extract else self._bind_arguments(entity_name, relation, entry, params)
            body = self._resolve(
                target_name, entry.nested, entry.field_override, False, params, fragments
            )
            if not body:
                params.rollback(mark)
                return ""
            fragment_name = fragments.name_for(target_name)
            if not extract:
                return f" {entry.output_name}{args_text}{{...{fragment_name}}}"
            text = ""
            definition = f"fragment {fragment_name} on {target.entity_type_name} {{ {body} }}"
            if fragments.add(target_name, definition):
                text = f" {definition}"
            # Spreads inside the fragment body need their own definitions
            text += self._resolve(target_name, entry.nested, None, True, params, fragments)
            return text

        if extract:
            return self._resolve(target_name, entry.nested, None, True, params, fragments)

        args_text = self._bind_arguments(entity_name, relation, entry, params)
        nested = self._resolve(
            target_name, entry.nested, entry.field_override, False, params, fragments
        )
        if not nested:
            params.rollback(mark)
            return ""
        return f" {entry.output_name}{args_text}{{{nested}}}"

    def _bind_arguments(
        self,
        entity_name: str,
        relation: RelationDescriptor,
        entry: Keyed,
        params: ParameterAccumulator,
    ) -> str:
        """Build ``(arg: $generatedName, ...)`` for the entry's ``$`` bindings."""
        arg_strs = []
        for arg, value in entry.arg_bindings.items():
            if value is UNSET:
                continue
            wire_type = relation.declared_arguments.get(arg)
            if wire_type is None:
                raise CatalogError(entity_name, f"{entry.relation}.{arg}", what="argument")
            var_name = params.bind(entry, arg, wire_type, value)
            arg_strs.append(f"{arg}: ${var_name}")
        if not arg_strs:
            return ""
        return f"({', '.join(arg_strs)})"


@dataclass
class Document:
    """A complete operation document and the variables to send with it."""
    text: str
    variables: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.text


@dataclass
class SubOperation:
    """One operation of a batch, before aliasing."""
    body: str
    declarations: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    fragments: str = ""


@dataclass
class BatchOperation:
    """Caller input for one aliased operation in a batch."""
    name: str
    variables: dict[str, Any] = field(default_factory=dict)
    include: Any = None
    fields: str | None = None

    @classmethod
    def coerce(cls, value: "BatchOperation | str | tuple | list") -> "BatchOperation":
        """Accept a BatchOperation, a bare name or a (name, variables, include, fields) tuple."""
        if isinstance(value, BatchOperation):
            return value
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, (tuple, list)) and 1 <= len(value) <= 4:
            name, *rest = value
            variables = rest[0] if len(rest) > 0 and rest[0] is not None else {}
            include = rest[1] if len(rest) > 1 else None
            fields = rest[2] if len(rest) > 2 else None
            return cls(name=name, variables=dict(variables), include=include, fields=fields)
        raise TypeError(f"Cannot build a batch operation from {value!r}")


@dataclass
class BatchDocument:
    """A batch document, its merged variables and the alias mapping."""
    text: str
    variables: dict[str, Any] = field(default_factory=dict)
    # Document alias -> caller's key
    aliases: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.text


def batch_alias(key: Any) -> str:
    """Make a caller key usable as a selection alias."""
    alias = str(key)
    if alias[:1].isdigit():
        return f"a{alias}"
    return alias


class QueryBuilder:
    """Builds GraphQL documents from catalog metadata."""

    def __init__(self, catalog: Catalog):
        """Initialize with the catalog used for entity and operation lookups."""
        self.catalog = catalog
        self.resolver = FieldResolver(catalog)

    def fragment(self, entity_name: str, include: Any = None, fields: str | None = None) -> str:
        """Resolve a bare selection for an entity, without an operation around it."""
        return self.resolver.resolve_fields(entity_name, include, fields)

    def build_document(
        self,
        kind: str,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
    ) -> Document:
        """Build a complete operation document.

        Args:
            kind: 'query', 'mutation' or 'subscription'
            name: Operation name from the catalog
            variables: Root variables; values set to UNSET are dropped, None is kept
            include: Include spec for the returned entity. A string here is
                taken as the field text when ``fields`` is not given.
            fields: Field text used instead of the root entity's default fields

        Returns:
            The document and the variables to send. Unknown operations are
            passed through: the name itself is returned as the document text.
        """
        sub = self.build_sub_operation(kind, name, variables, include, fields)
        if self.catalog.operation(kind, name) is None:
            return Document(text=name, variables=sub.variables)

        params_def = f"({', '.join(sub.declarations)})" if sub.declarations else ""
        text = f"{kind} {OPERATION_NAME}{params_def} {{ {sub.body} }}"
        if sub.fragments:
            text += f" {sub.fragments}"
        return Document(text=text, variables=sub.variables)

    def build_sub_operation(
        self,
        kind: str,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
        index: int | None = None,
        fragments: FragmentSet | None = None,
    ) -> SubOperation:
        """Build the parts of one operation without the surrounding document.

        With an ``index``, every variable name gets the index appended so
        several sub-operations can share one document. ``fragments``
        receives the fragment definitions and decides their names.
        """
        if isinstance(include, str) and not fields:
            fields, include = include, None

        variables = {k: v for k, v in (variables or {}).items() if v is not UNSET}
        operation = self.catalog.operation(kind, name)
        if operation is None:
            return SubOperation(body=name, variables=variables)

        suffix = "" if index is None else str(index)
        params = ParameterAccumulator(suffix)
        declarations = []
        bound = []
        values = {}
        for var_name, value in variables.items():
            wire_type = operation.argument_types.get(var_name)
            if wire_type is None:
                raise CatalogError(name, var_name, what="argument")
            declarations.append(f"${var_name}{suffix}: {wire_type}")
            bound.append(f"{var_name}: ${var_name}{suffix}")
            values[f"{var_name}{suffix}"] = value

        spec = _as_spec(include)
        if isinstance(spec, MalformedInclude):
            # An empty root selection is not a valid document; keep the base fields
            logger.warning("Ignoring malformed include for '%s': %r", name, spec.value)
            spec = None
        if fragments is None:
            fragments = FragmentSet()
        root = operation.root_entity
        selection = self.resolver.resolve_fields(root, spec, fields, False, params, fragments)
        fragment_text = ""
        if spec is not None:
            fragment_text = self.resolver.resolve_fields(
                root, spec, None, True, params, fragments
            ).strip()

        body = f"{name}({', '.join(bound)})" if bound else name
        if self.catalog.has_entity(root):
            body += f" {{ {selection} }}"

        declarations.extend(params.declaration_list())
        values.update(params.values)
        return SubOperation(
            body=body,
            declarations=declarations,
            variables=values,
            fragments=fragment_text,
        )

    def build_batch(
        self,
        kind: str,
        operations: Mapping[Any, "BatchOperation | str | tuple"],
    ) -> BatchDocument:
        """Combine several operations of one kind into a single aliased document.

        Variables are suffixed with each operation's position so that equal
        names in different operations never collide. A fragment several
        operations define identically is emitted once; an operation whose
        fragment bodies differ from earlier ones gets its own fragment names.
        """
        if not operations:
            raise ValueError("A batch needs at least one operation")

        declarations: list[str] = []
        variables: dict[str, Any] = {}
        selections: list[str] = []
        definitions: dict[str, str] = {}
        aliases: dict[str, Any] = {}

        for index, (key, value) in enumerate(operations.items()):
            op = BatchOperation.coerce(value)
            fragments = FragmentSet()
            sub = self.build_sub_operation(
                kind, op.name, op.variables, op.include, op.fields,
                index=index, fragments=fragments,
            )
            if any(definitions.get(name, text) != text for name, text in fragments.definitions.items()):
                fragments = FragmentSet(suffix=f"_{index}")
                sub = self.build_sub_operation(
                    kind, op.name, op.variables, op.include, op.fields,
                    index=index, fragments=fragments,
                )
            for name, text in fragments.definitions.items():
                definitions.setdefault(name, text)

            alias = batch_alias(key)
            while alias in aliases:
                alias = f"{alias}_{index}"
            aliases[alias] = key
            selections.append(f"{alias}: {sub.body}")
            declarations.extend(sub.declarations)
            variables.update(sub.variables)

        params_def = f"({', '.join(declarations)})" if declarations else ""
        text = f"{kind} {OPERATION_NAME}{params_def} {{ {' '.join(selections)} }}"
        if definitions:
            text += " " + " ".join(definitions.values())
        return BatchDocument(text=text, variables=variables, aliases=aliases)
