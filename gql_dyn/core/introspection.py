"""Definitions generator using graphql-core.

Turns a schema (live introspection result or SDL) into the catalog the
client builds documents from:

- every object and interface type (except the root types and names
  starting with ``_``) becomes an entity keyed by its name with a
  lower-cased first letter,
- fields whose unwrapped type is an object, interface or union become
  relations, every other field is a default field,
- fields of Query/Mutation/Subscription become operations, with
  argument wire types such as ``[ID!]!``.
"""

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from graphql import (
    GraphQLField,
    GraphQLSchema,
    build_client_schema,
    build_schema,
    get_introspection_query,
    get_named_type,
    is_interface_type,
    is_object_type,
    is_union_type,
)

from .auth import Auth
from .catalog import OPERATION_KINDS, Catalog
from .result import normalize, unwrap
from .transport import HttpTransport

UNION_FIELDS = "__typename"


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:]


def _is_relation(field: GraphQLField) -> bool:
    named = get_named_type(field.type)
    return is_object_type(named) or is_interface_type(named) or is_union_type(named)


def _arguments(field: GraphQLField) -> dict[str, str]:
    # str() of a wrapped type renders its wire form, e.g. "[String!]!"
    return {name: str(arg.type) for name, arg in field.args.items()}


def _entity(gql_type: Any) -> dict[str, Any]:
    fields = []
    relations = {}
    for name, field in gql_type.fields.items():
        if _is_relation(field):
            relations[name] = {
                "type": lower_first(get_named_type(field.type).name),
                "args": _arguments(field),
            }
        else:
            fields.append(name)
    return {"entity": gql_type.name, "fields": fields, "availableInc": relations}


def definitions_from_schema(schema: GraphQLSchema) -> Catalog:
    """Build a catalog from a graphql-core schema."""
    roots = {
        "query": schema.query_type,
        "mutation": schema.mutation_type,
        "subscription": schema.subscription_type,
    }
    root_names = {t.name for t in roots.values() if t is not None}

    entities = {}
    for name, gql_type in schema.type_map.items():
        if name in root_names or name.startswith("_"):
            continue
        if is_object_type(gql_type) or is_interface_type(gql_type):
            entities[lower_first(name)] = _entity(gql_type)
        elif is_union_type(gql_type):
            # Members differ; only the type name is selectable without inline fragments
            entities[lower_first(name)] = {"entity": name, "fields": [UNION_FIELDS]}

    definitions: dict[str, Any] = {"entities": entities}
    for kind in OPERATION_KINDS:
        root = roots[kind]
        definitions[kind] = {
            name: [_arguments(field), lower_first(get_named_type(field.type).name)]
            for name, field in (root.fields.items() if root is not None else [])
        }
    return Catalog.model_validate(definitions)


def build_definitions(introspection: Mapping[str, Any]) -> Catalog:
    """Build a catalog from an introspection result (with or without the ``data`` wrapper)."""
    if "data" in introspection:
        introspection = introspection["data"]
    return definitions_from_schema(build_client_schema(introspection))


def definitions_from_sdl(sdl: str) -> Catalog:
    """Build a catalog from schema definition language text."""
    return definitions_from_schema(build_schema(sdl))


async def fetch_definitions(
    url: str,
    auth: Auth | None = None,
    *,
    transport: HttpTransport | None = None,
) -> Catalog:
    """Introspect a live endpoint.

    Raises:
        GraphQLError: If the endpoint answers with errors
    """
    transport = transport or HttpTransport(url, auth)
    try:
        raw = await transport.execute(get_introspection_query(descriptions=False), {})
    finally:
        await transport.close()
    schema = unwrap(normalize(raw, "__schema", endpoint=url))
    return definitions_from_schema(build_client_schema({"__schema": schema}))


def write_definitions(catalog: Catalog, path: str | Path) -> Path:
    """Write a catalog as a definitions JSON file and return its path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(catalog.to_definitions(), f, indent=2)
        f.write("\n")
    return path
