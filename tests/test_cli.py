"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from conftest import DEFINITIONS
from gql_dyn.cli import main
from gql_dyn.core.catalog import Catalog

SDL = """
type Query { user(id: ID!): User }
type User { id: ID! name: String friends: [User!]! }
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def definitions_file(tmp_path):
    path = tmp_path / "definitions.json"
    path.write_text(json.dumps(DEFINITIONS))
    return str(path)


class TestDefinitionsCommand:
    """Tests for 'gql-dyn definitions'."""

    def test_from_sdl(self, runner, tmp_path):
        schema = tmp_path / "schema.graphqls"
        schema.write_text(SDL)
        out = tmp_path / "out"

        result = runner.invoke(main, ["definitions", "-s", str(schema), "-n", "catalog", "-f", str(out)])

        assert result.exit_code == 0, result.output
        assert "Definitions stored to" in result.output
        catalog = Catalog.load(out / "catalog.json")
        assert list(catalog.entity("user").available_relations) == ["friends"]

    def test_name_and_folder_from_env(self, runner, tmp_path):
        schema = tmp_path / "schema.graphql"
        schema.write_text(SDL)

        result = runner.invoke(
            main,
            ["definitions", "--schema", str(schema)],
            env={"GQL_DYN_NAME": "fromenv", "GQL_DYN_FOLDER": str(tmp_path)},
        )

        assert result.exit_code == 0, result.output
        assert (tmp_path / "fromenv.json").exists()

    def test_needs_exactly_one_source(self, runner, tmp_path):
        result = runner.invoke(main, ["definitions", "-f", str(tmp_path)], env={"GQL_DYN_ENDPOINT": ""})
        assert result.exit_code == 2
        assert "exactly one" in result.output


class TestBuildCommand:
    """Tests for 'gql-dyn build'."""

    def test_prints_document_and_variables(self, runner, definitions_file):
        result = runner.invoke(
            main,
            ["build", "user", "-d", definitions_file, "-V", '{"id": 1}', "-i", '["posts"]'],
        )

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0] == "query do($id: ID!) { user(id: $id) { id name posts{id title} } }"
        assert json.loads("\n".join(lines[1:])) == {"id": 1}

    def test_mutation_kind(self, runner, definitions_file):
        result = runner.invoke(
            main,
            ["build", "addPost", "-d", definitions_file, "-k", "mutation", "--fields", "id"],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "mutation do { addPost { id } }"

    def test_unknown_relation(self, runner, definitions_file):
        result = runner.invoke(main, ["build", "user", "-d", definitions_file, "-i", '["followers"]'])
        assert result.exit_code == 1
        assert "Unknown relation 'followers' on 'user'" in result.output

    def test_bad_json(self, runner, definitions_file):
        result = runner.invoke(main, ["build", "user", "-d", definitions_file, "-V", "{id: 1}"])
        assert result.exit_code == 2
        assert "not valid JSON" in result.output


class TestRequestCommand:
    """Tests for 'gql-dyn request'."""

    def test_rejects_subscriptions(self, runner, definitions_file):
        result = runner.invoke(
            main,
            ["request", "postAdded", "-d", definitions_file, "-k", "subscription", "-e", "http://api.test"],
        )
        assert result.exit_code == 2
        assert "not supported" in result.output

    def test_requires_endpoint(self, runner, definitions_file):
        result = runner.invoke(main, ["request", "user", "-d", definitions_file], env={"GQL_DYN_ENDPOINT": None})
        assert result.exit_code == 2
