"""
Tests for saved queries (tagq/query/registry.py).
"""
import pytest

from tagq.errors import QuerySyntaxError
from tagq.query.registry import QueryRegistry, RegistryError, SavedQuery, parse_queries
from tagq.query.parser import parse_query


QUERIES_YAML = """
open-tasks: find todo where not Status = Done order by -created

by-due:
  description: Todos by due date
  query: find todo where DueDate exists order by DueDate
"""


class TestParseQueries:
    def test_plain_and_described(self):
        queries = parse_queries({
            "a": "find todo",
            "b": {"query": "find meeting", "description": "Meetings"},
        })
        assert queries["a"].query.target == "todo"
        assert queries["a"].description is None
        assert queries["b"].description == "Meetings"

    def test_empty(self):
        assert parse_queries(None) == {}

    @pytest.mark.parametrize("data", [
        ["find todo"],
        {"a": {"description": "no query"}},
        {"a": 42},
    ])
    def test_invalid(self, data):
        with pytest.raises(RegistryError):
            parse_queries(data)

    def test_query_text_validated(self):
        with pytest.raises(QuerySyntaxError):
            parse_queries({"broken": "find todo where"})


class TestQueryRegistry:
    def test_load_string(self):
        registry = QueryRegistry()
        assert registry.load_string(QUERIES_YAML) == 2
        assert registry.list() == ["by-due", "open-tasks"]
        assert registry.get("by-due").description == "Todos by due date"
        assert registry.has("open-tasks")

    def test_unknown_query(self):
        with pytest.raises(KeyError):
            QueryRegistry().get("missing")

    def test_missing_file(self, temp_dir):
        with pytest.raises(RegistryError):
            QueryRegistry().load_file(f"{temp_dir}/nope.yaml")

    def test_save_and_load(self, temp_dir):
        registry = QueryRegistry()
        registry.load_string(QUERIES_YAML)
        registry.register(SavedQuery("people", "find employee", parse_query("find employee")))
        path = f"{temp_dir}/saved/queries.yaml"
        registry.save(path)

        loaded = QueryRegistry()
        assert loaded.load_file(path) == 3
        assert loaded.get("people").text == "find employee"
        assert loaded.get("by-due").description == "Todos by due date"
        assert str(loaded.get("people").source).endswith("queries.yaml")

    def test_saved_query_runs(self, workspace_db):
        from tagq.query.executor import QueryExecutor

        registry = QueryRegistry()
        registry.load_string(QUERIES_YAML)
        result = QueryExecutor(workspace_db).execute(registry.get("open-tasks").query)
        assert {item.id for item in result} == {"t3", "t4", "t5"}
