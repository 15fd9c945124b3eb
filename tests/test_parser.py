"""
Tests for tagq/query/parser.py and the AST formatter.
"""
import pytest

from tagq.errors import QuerySyntaxError
from tagq.query.ast import (
    Query, OrderItem, Operator, Comparison, Exists, IsEmpty, Not, And, Or,
    format_query, format_filter,
)
from tagq.query.parser import parse, parse_query, parse_filter
from tagq.query.tokens import tokenize


def cmp(field, value, op=Operator.EQ):
    return Comparison(field, op, value)


# =============================================================================
# Query clauses
# =============================================================================

class TestQueryClauses:
    """Target, ordering, pagination and projection."""

    def test_target_only(self):
        assert parse_query("find task") == Query(target="task")

    def test_wildcard_target(self):
        query = parse_query("find *")
        assert query.target == "*"
        assert query.is_wildcard

    def test_quoted_target(self):
        assert parse_query('find "meeting notes"').target == "meeting notes"

    def test_parse_accepts_tokens(self):
        assert parse(tokenize("find task limit 3")) == Query(target="task", limit=3)

    def test_order_by_directions(self):
        query = parse_query("find task order by -created, name, -Priority")
        assert query.order_by == [
            OrderItem("created", descending=True),
            OrderItem("name"),
            OrderItem("Priority", descending=True),
        ]

    def test_order_by_quoted_fields(self):
        query = parse_query('find task order by -"Due Date", "Item Count"')
        assert query.order_by == [
            OrderItem("Due Date", descending=True),
            OrderItem("Item Count"),
        ]

    def test_limit_and_offset(self):
        query = parse_query("find task limit 10 offset 20")
        assert query.limit == 10
        assert query.offset == 20

    def test_offset_zero(self):
        assert parse_query("find task offset 0").offset == 0

    def test_select(self):
        query = parse_query('find task select name, Status, "Due Date"')
        assert query.select == ["name", "Status", "Due Date"]

    def test_all_clauses(self):
        query = parse_query(
            "FIND task WHERE Status = Done ORDER BY -created LIMIT 5 OFFSET 5 SELECT name"
        )
        assert query == Query(
            target="task",
            filter=cmp("Status", "Done"),
            order_by=[OrderItem("created", True)],
            limit=5,
            offset=5,
            select=["name"],
        )

    def test_referenced_fields(self):
        query = parse_query("find task where a = 1 and not b exists order by -c")
        assert query.referenced_fields() == ["a", "b", "c"]


# =============================================================================
# Filters
# =============================================================================

class TestFilters:
    """Filter expressions and precedence."""

    def test_parenthesized_or(self):
        query = parse_query("find task where (Status = Done or Status = Active)")
        assert query.filter == Or(cmp("Status", "Done"), cmp("Status", "Active"))

    def test_exists(self):
        assert parse_filter("Assignee exists") == Exists("Assignee")

    def test_not_exists(self):
        assert parse_filter("not Assignee exists") == Not(Exists("Assignee"))

    @pytest.mark.parametrize("text", ["Notes is empty", "Notes IS NULL"])
    def test_is_empty(self, text):
        assert parse_filter(text) == IsEmpty("Notes")

    def test_not_is_empty(self):
        assert parse_filter("not Notes is empty and a = 1") == And(Not(IsEmpty("Notes")), cmp("a", 1))

    def test_parent_path(self):
        assert parse_filter("parent.tags = project") == cmp("parent.tags", "project")

    def test_and_binds_tighter_than_or(self):
        assert parse_filter("a = 1 or b = 2 and c = 3") == Or(
            cmp("a", 1), And(cmp("b", 2), cmp("c", 3))
        )

    def test_not_binds_tighter_than_and(self):
        assert parse_filter("not a = 1 and b = 2") == And(Not(cmp("a", 1)), cmp("b", 2))

    def test_left_associative(self):
        assert parse_filter("a = 1 and b = 2 and c = 3") == And(
            And(cmp("a", 1), cmp("b", 2)), cmp("c", 3)
        )
        assert parse_filter("a = 1 or b = 2 or c = 3") == Or(
            Or(cmp("a", 1), cmp("b", 2)), cmp("c", 3)
        )

    def test_parentheses_override_precedence(self):
        assert parse_filter("(a = 1 or b = 2) and c = 3") == And(
            Or(cmp("a", 1), cmp("b", 2)), cmp("c", 3)
        )

    def test_double_not(self):
        assert parse_filter("not not a exists") == Not(Not(Exists("a")))

    @pytest.mark.parametrize("text,value", [
        ("Status = Done", "Done"),
        ("Status = 'In Progress'", "In Progress"),
        ("Count = 5", 5),
        ("Score = -1.5", -1.5),
        ("Due = 2025-01-01", "2025-01-01"),
    ])
    def test_value_kinds(self, text, value):
        assert parse_filter(text).value == value

    @pytest.mark.parametrize("op", list(Operator))
    def test_operators(self, op):
        assert parse_filter(f"x {op.value} 1").op == op

    def test_quoted_field_name(self):
        assert parse_filter('"Due Date" < 2025-01-01') == Comparison(
            "Due Date", Operator.LT, "2025-01-01"
        )


# =============================================================================
# Whitespace and formatting
# =============================================================================

class TestRoundTrip:
    """Whitespace variance and canonical formatting."""

    @pytest.mark.parametrize("text", [
        "find task where Status=Done and Count>=5 order by -created,name limit 5",
        "find  task  where  Status  =  Done  and  Count  >=  5  order  by  -created ,  name  limit  5",
        "find task where Status= Done and Count >=5 order by -created ,name limit 5",
        "\tfind task\nwhere Status = Done and Count >= 5 order by -created, name limit 5  ",
    ])
    def test_whitespace_variance(self, text):
        expected = parse_query(
            "find task where Status = Done and Count >= 5 order by -created, name limit 5"
        )
        assert parse_query(text) == expected

    @pytest.mark.parametrize("text", [
        "find task",
        "find * where Notes ~ 'big plans'",
        "find task where (a = 1 or b = 2) and not (c exists or d != x)",
        "find task where a = 1 or b = 2 and c = 3",
        "find task where a = 1 and (b = 2 and c = 3)",
        "find task where Count > -3.5 order by -Due, name limit 3 offset 6 select name, Status",
        "find task where \"Due Date\" < 2025-01-01",
        'find task order by "Due Date" limit 5',
        'find task order by -"Due Date", -created, "order"',
        "find task where Notes is empty and not parent.name ~ x order by -parent.name",
        'find task where "2fa" exists order by -"2fa"',
    ])
    def test_format_then_parse_is_identity(self, text):
        query = parse_query(text)
        assert parse_query(format_query(query)) == query

    def test_format_filter_minimal_parentheses(self):
        expr = parse_filter("(a = 1 or b = 2) and c exists")
        assert format_filter(expr) == "(a = 1 or b = 2) and c exists"

    def test_format_filter_rejects_unknown_nodes(self):
        with pytest.raises(TypeError):
            format_filter("not a node")


# =============================================================================
# Errors
# =============================================================================

class TestSyntaxErrors:
    """Malformed queries raise QuerySyntaxError."""

    @pytest.mark.parametrize("text", [
        "",
        "task",
        "find",
        "find where a = 1",
        "find task where",
        "find task where a",
        "find task where a =",
        "find task where a = 1 and",
        "find task where (a = 1",
        "find task where a = 1)",
        "find task where ()",
        "find task order -created",
        "find task order by",
        "find task limit",
        "find task limit x",
        "find task limit 0",
        "find task limit 2.5",
        "find task offset -1",
        "find task limit 5 where a = 1",
        "find task task",
        "find task select",
        "find -task",
        "find task where a is",
        "find task where a is 5",
        'find -"task"',
        "find task order by -name -created",
    ])
    def test_invalid(self, text):
        with pytest.raises(QuerySyntaxError):
            parse_query(text)

    def test_missing_target_reports_expected(self):
        with pytest.raises(QuerySyntaxError) as exc_info:
            parse_query("find where a = 1")
        assert exc_info.value.expected == "tag name or '*'"
        assert exc_info.value.found == "keyword 'where'"
        assert exc_info.value.position == 5

    def test_trailing_tokens_reported(self):
        with pytest.raises(QuerySyntaxError) as exc_info:
            parse_query("find task limit 5 extra")
        assert exc_info.value.found == "identifier 'extra'"
        assert exc_info.value.position == 18

    def test_unmatched_paren_reported_at_end(self):
        with pytest.raises(QuerySyntaxError) as exc_info:
            parse_query("find task where (a = 1")
        assert exc_info.value.expected == "')'"
        assert exc_info.value.found is None

    def test_parse_filter_rejects_trailing(self):
        with pytest.raises(QuerySyntaxError):
            parse_filter("a = 1 b")

    def test_parse_filter_rejects_empty(self):
        with pytest.raises(QuerySyntaxError):
            parse_filter("  ")
