"""Command-line interface for gql-dyn."""

import asyncio
import json
import logging
from pathlib import Path

import click

from .core.auth import BearerAuth, NoAuth
from .core.catalog import OPERATION_KINDS, Catalog
from .core.errors import GqlDynError
from .core.executor import ClientConfig, GraphQLClient
from .core.query_builder import QueryBuilder
from .core.introspection import (
    build_definitions,
    definitions_from_sdl,
    fetch_definitions,
    write_definitions,
)


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_json_option(value: str | None, option: str):
    """Parse a JSON-valued option, turning bad JSON into a usage error."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON ({e})", param_hint=option)


def load_schema_file(schema_path: Path) -> Catalog:
    """Read SDL (.graphql/.graphqls) or an introspection result (.json)."""
    text = schema_path.read_text(encoding="utf-8")
    if schema_path.suffix == ".json":
        return build_definitions(json.loads(text))
    return definitions_from_sdl(text)


@click.group()
@click.version_option(package_name="gql-dyn")
def main():
    """Dynamic GraphQL documents from a definitions catalog.

    Generate the catalog once, then build or send operations with include specs.
    """
    pass


@main.command()
@click.option(
    "--endpoint",
    "-e",
    envvar="GQL_DYN_ENDPOINT",
    help="GraphQL endpoint to introspect (env: GQL_DYN_ENDPOINT).",
)
@click.option(
    "--schema",
    "-s",
    type=click.Path(exists=True, dir_okay=False),
    help="SDL file (.graphql, .graphqls) or introspection result (.json) instead of an endpoint.",
)
@click.option(
    "--name",
    "-n",
    envvar="GQL_DYN_NAME",
    default="definitions",
    show_default=True,
    help="Base name of the written file (env: GQL_DYN_NAME).",
)
@click.option(
    "--folder",
    "-f",
    envvar="GQL_DYN_FOLDER",
    default=".",
    type=click.Path(file_okay=False),
    help="Folder to write the file to (env: GQL_DYN_FOLDER).",
)
@click.option("--token", envvar="GQL_DYN_TOKEN", help="Bearer token for the endpoint (env: GQL_DYN_TOKEN).")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
def definitions(endpoint: str | None, schema: str | None, name: str, folder: str, token: str | None, verbose: bool):
    """Generate the definitions catalog from a live endpoint or a schema file.

    Examples:

        gql-dyn definitions --endpoint https://api.example.com/graphql

        gql-dyn definitions -s ./schema.graphqls -n catalog -f ./app
    """
    configure_logging(verbose)
    if bool(endpoint) == bool(schema):
        raise click.UsageError("Pass exactly one of --endpoint or --schema.")

    if schema:
        click.echo(f"Reading schema {schema}...")
        catalog = load_schema_file(Path(schema))
    else:
        click.echo(f"Introspecting {endpoint}...")
        auth = BearerAuth(token) if token else NoAuth()
        try:
            catalog = asyncio.run(fetch_definitions(endpoint, auth))
        except GqlDynError as e:
            raise click.ClickException(str(e))

    if verbose:
        click.echo(f"  Entities: {len(catalog.entities)}")
        for kind in OPERATION_KINDS:
            click.echo(f"  {kind.capitalize()} operations: {len(getattr(catalog, kind))}")

    path = write_definitions(catalog, Path(folder) / f"{name}.json")
    click.secho(f"Definitions stored to {path}", fg="green")


def _operation_options(func):
    func = click.option("--fields", help="Field text replacing the default fields.")(func)
    func = click.option("--include", "-i", help="Include spec as JSON, e.g. '[\"*\"]'.")(func)
    func = click.option("--variables", "-V", help="Variables as a JSON object.")(func)
    func = click.option(
        "--kind",
        "-k",
        type=click.Choice(OPERATION_KINDS),
        default="query",
        show_default=True,
    )(func)
    func = click.option(
        "--definitions",
        "-d",
        "definitions_path",
        required=True,
        type=click.Path(exists=True, dir_okay=False),
        help="Definitions file written by 'gql-dyn definitions'.",
    )(func)
    func = click.argument("operation")(func)
    return func


@main.command()
@_operation_options
def build(operation, definitions_path, kind, variables, include, fields):
    """Print the document for an operation.

    Example:

        gql-dyn build user -d definitions.json -V '{"id": 1}' -i '["*"]'
    """
    builder = QueryBuilder(Catalog.load(definitions_path))
    try:
        document = builder.build_document(
            kind,
            operation,
            parse_json_option(variables, "--variables"),
            parse_json_option(include, "--include"),
            fields,
        )
    except GqlDynError as e:
        raise click.ClickException(str(e))
    click.echo(document.text)
    if document.variables:
        click.echo(json.dumps(document.variables, indent=2))


@main.command()
@_operation_options
@click.option("--endpoint", "-e", envvar="GQL_DYN_ENDPOINT", required=True, help="GraphQL endpoint (env: GQL_DYN_ENDPOINT).")
@click.option("--token", envvar="GQL_DYN_TOKEN", help="Bearer token (env: GQL_DYN_TOKEN).")
@click.option("--timeout", type=float, help="Seconds to wait for the result.")
@click.option("--verbose", "-v", is_flag=True, help="Log documents and variables.")
def request(operation, definitions_path, kind, variables, include, fields, endpoint, token, timeout, verbose):
    """Send a query or mutation and print the normalized result as JSON.

    Example:

        gql-dyn request users -d definitions.json -e http://localhost:4000/graphql -i '["posts"]'
    """
    if kind == "subscription":
        raise click.UsageError("Subscriptions are not supported by 'request'.")
    configure_logging(verbose)
    config = ClientConfig(
        url=endpoint,
        auth=BearerAuth(token) if token else None,
        timeout=timeout,
        debug=verbose,
    )
    parsed_variables = parse_json_option(variables, "--variables")
    parsed_include = parse_json_option(include, "--include")

    async def run():
        async with GraphQLClient(config, Catalog.load(definitions_path)) as client:
            return await client.submit(kind, operation, parsed_variables, parsed_include, fields)

    try:
        result = asyncio.run(run())
    except GqlDynError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
