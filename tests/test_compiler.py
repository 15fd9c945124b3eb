"""
Tests for the query compiler (tagq/query/compiler.py).

These exercise compilation only; behaviour against a populated store is
covered in test_executor.py.
"""
import pytest

from conftest import NOW
from tagq.config import TagqConfig
from tagq.errors import FieldNotFoundError, TagNotFoundError, TypeCoercionError
from tagq.query.ast import Exists, IsEmpty
from tagq.query.compiler import QueryCompiler, compile_query
from tagq.query.parser import parse_query
from tagq.schema import DataType, SchemaResolver, SchemaSnapshot


@pytest.fixture
def todo_snapshot(contact_snapshot):
    snapshot = contact_snapshot
    snapshot.add_tag("t", "todo")
    for name in ("Status", "Due Date", "Item Count", "Is Urgent", "Notes"):
        snapshot.add_field("t", name)
    return snapshot


@pytest.fixture
def compiler(todo_snapshot):
    return QueryCompiler(SchemaResolver(todo_snapshot), now=NOW)


def compile_text(compiler, text):
    return compiler.compile(parse_query(text))


class TestCompile:
    def test_target_resolved(self, compiler):
        compiled = compile_text(compiler, "find Todo")
        assert compiled.tag.tag_id == "t"
        assert compiled.fields == ["Status", "Due Date", "Item Count", "Is Urgent", "Notes"]

    def test_inherited_fields_listed(self, compiler):
        compiled = compile_text(compiler, "find manager")
        assert compiled.fields == ["Team", "Department", "StartDate", "Email", "Phone"]

    def test_membership_in_sql(self, compiler):
        sql = compile_text(compiler, "find todo").to_sql()
        assert "tag_applications" in sql
        assert "'t'" in sql

    def test_filter_compiles_to_exists(self, compiler):
        sql = compile_text(compiler, "find todo where Status = Done").to_sql()
        assert "EXISTS" in sql
        assert "'Status'" in sql
        assert "'Done'" in sql

    def test_convenience_function(self, todo_snapshot):
        compiled = compile_query(parse_query("find todo"), SchemaResolver(todo_snapshot))
        assert compiled.query.target == "todo"

    def test_limit_offset_in_sql(self, compiler):
        compiled = compile_text(compiler, "find todo limit 10 offset 20")
        assert compiled.limit == 10
        assert compiled.offset == 20
        sql = compiled.to_sql()
        assert "LIMIT 10" in sql
        assert "OFFSET 20" in sql

    def test_no_limit_when_absent(self, compiler):
        sql = compile_text(compiler, "find todo").to_sql()
        assert "LIMIT" not in sql
        assert "OFFSET" not in sql

    def test_offset_without_limit(self, compiler):
        sql = compile_text(compiler, "find todo offset 5").to_sql()
        assert "OFFSET 5" in sql

    def test_default_order(self, compiler):
        sql = compile_text(compiler, "find todo").to_sql()
        assert "ORDER BY nodes.created DESC" in sql

    def test_count_statement_ignores_pagination(self, compiler):
        compiled = compile_text(compiler, "find todo limit 1")
        assert "LIMIT" not in str(compiled.count_statement)

    def test_date_comparison_uses_strftime(self, compiler):
        sql = compile_text(compiler, "find todo where due_date < 2025-01-01").to_sql()
        assert "strftime" in sql

    def test_number_comparison_casts(self, compiler):
        sql = compile_text(compiler, 'find todo where "Item Count" > 4').to_sql()
        assert "CAST" in sql
        assert "GLOB" in sql

    def test_contains_uses_like(self, compiler):
        sql = compile_text(compiler, "find todo where Notes ~ quarterly").to_sql()
        assert "LIKE" in sql
        assert "MATCH" not in sql

    def test_contains_uses_fts_when_configured(self, todo_snapshot):
        compiler = QueryCompiler(
            SchemaResolver(todo_snapshot), TagqConfig(fuzzy_match="fts"), NOW
        )
        sql = compile_text(compiler, "find todo where Notes ~ quarterly").to_sql()
        assert "MATCH" in sql
        assert "field_values_fts" in sql

    def test_relative_date_resolved_against_now(self, compiler):
        sql = compile_text(compiler, "find todo where created > 7d").to_sql()
        # 2025-04-18T00:00:00Z
        assert "1744934400000" in sql


class TestFieldReferences:
    def test_declared_field(self, compiler):
        [ref] = compiler.resolve_reference("due_date", "t")
        assert ref.stored_name == "Due Date"
        assert ref.data_type == DataType.DATE
        assert not ref.is_node_column

    def test_node_column(self, compiler):
        [ref] = compiler.resolve_reference("Created", "t")
        assert ref.is_node_column
        assert ref.data_type == DataType.DATE

    def test_declared_field_shadows_node_column(self, todo_snapshot):
        todo_snapshot.add_field("t", "Name")
        compiler = QueryCompiler(SchemaResolver(todo_snapshot))
        [ref] = compiler.resolve_reference("name", "t")
        assert ref.stored_name == "Name"

    def test_inherited_field(self, compiler):
        [ref] = compiler.resolve_reference("email", "m")
        assert ref.stored_name == "Email"

    def test_wildcard_groups(self, compiler):
        refs = compiler.resolve_reference("Email", None)
        assert len(refs) == 1
        assert refs[0].tag_ids == ("c", "e", "m")

    def test_wildcard_unknown(self, compiler):
        assert compiler.resolve_reference("Salary", None) == []


class TestCompileErrors:
    def test_unknown_tag(self, compiler):
        with pytest.raises(TagNotFoundError):
            compile_text(compiler, "find project")

    def test_unknown_field_strict(self, compiler):
        with pytest.raises(FieldNotFoundError) as exc_info:
            compile_text(compiler, "find todo where Priority > 2")
        assert exc_info.value.field_name == "Priority"

    def test_unknown_order_field_strict(self, compiler):
        with pytest.raises(FieldNotFoundError):
            compile_text(compiler, "find todo order by Priority")

    def test_unknown_field_lenient(self, todo_snapshot):
        resolver = SchemaResolver(todo_snapshot, strict=False)
        compiled = QueryCompiler(resolver).compile(
            parse_query("find todo where Priority > 2 order by Priority")
        )
        assert compiled.tag.tag_id == "t"
        assert len(resolver.warnings) >= 1

    @pytest.mark.parametrize("text", [
        'find todo where "Due Date" < not-a-date',
        'find todo where "Is Urgent" > true',
        "find todo where Status > Done",
        'find todo where "Item Count" = abc',
        'find todo where "Is Urgent" = maybe',
        "find todo where Notes >= 3",
    ])
    def test_type_errors(self, compiler, text):
        with pytest.raises(TypeCoercionError):
            compile_text(compiler, text)

    def test_unknown_filter_node(self, compiler):
        with pytest.raises(TypeError):
            compiler.compile_filter("Status = Done", "t")


class TestWildcard:
    def test_no_tag(self, compiler):
        compiled = compile_text(compiler, "find * where Notes ~ quarterly")
        assert compiled.tag is None
        assert compiled.fields == []

    def test_unknown_field_compiles(self, compiler):
        compiled = compile_text(compiler, "find * where Salary = 10")
        assert compiled.query.is_wildcard

    def test_exists_on_unknown_field(self, compiler):
        assert compiler.compile_filter(Exists("Salary"), None) is not None

    def test_mixed_types(self):
        snapshot = SchemaSnapshot()
        snapshot.add_tag("a", "article")
        snapshot.add_field("a", "Rank")
        snapshot.add_tag("b", "board")
        snapshot.add_field("b", "Rank", data_type=DataType.NUMBER)
        compiler = QueryCompiler(SchemaResolver(snapshot))

        assert len(compiler.resolve_reference("rank", None)) == 2
        # text group cannot take '>', the number group can
        compile_text(compiler, "find * where Rank > 3")
        with pytest.raises(TypeCoercionError):
            compile_text(compiler, "find * where Rank > abc")


class TestEmptyAndParentPaths:
    def test_is_empty_is_negated_exists(self, compiler):
        sql = compile_text(compiler, "find todo where Notes is empty").to_sql()
        assert "NOT (EXISTS" in sql
        assert "'Notes'" in sql

    def test_is_empty_on_node_column(self, compiler):
        sql = compile_text(compiler, "find todo where name is empty").to_sql()
        assert "nodes.name IS NULL" in sql

    def test_is_empty_on_unknown_wildcard_field(self, compiler):
        assert compiler.compile_filter(IsEmpty("Salary"), None) is not None

    def test_parent_name_joins_parent(self, compiler):
        sql = compile_text(compiler, "find todo where parent.name ~ Inbox").to_sql()
        assert "nodes.parent_id" in sql
        assert "LIKE" in sql

    def test_parent_tags(self, compiler):
        sql = compile_text(compiler, "find todo where parent.tags = project").to_sql()
        assert "tag_name" in sql
        assert "'project'" in sql

    def test_parent_tags_unordered(self, compiler):
        with pytest.raises(TypeCoercionError):
            compile_text(compiler, "find todo where parent.tags > project")

    def test_unknown_parent_path(self, compiler):
        with pytest.raises(FieldNotFoundError) as exc_info:
            compile_text(compiler, "find todo where parent.created exists")
        assert exc_info.value.available == ["name", "tags"]
