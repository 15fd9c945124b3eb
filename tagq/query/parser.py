"""
Recursive descent parser for the tagq query language.

Grammar:

    Query     := 'find' Target ('where' Filter)? ('order' 'by' OrderList)?
                 ('limit' NUMBER)? ('offset' NUMBER)? ('select' FieldList)?
    Target    := IDENTIFIER | STRING
    Filter    := OrExpr
    OrExpr    := AndExpr ('or' AndExpr)*
    AndExpr   := UnaryExpr ('and' UnaryExpr)*
    UnaryExpr := 'not' UnaryExpr | Primary
    Primary   := '(' Filter ')' | Field 'exists' | Field 'is' ('empty' | 'null')
               | Field OPERATOR Value
    Value     := STRING | NUMBER | IDENTIFIER
    OrderList := OrderItem (',' OrderItem)*
    OrderItem := Field | '-' Field
    FieldList := Field (',' Field)*

Only syntax is checked here. Whether fields exist is decided later by the
schema resolver.
"""

from typing import List, Optional

from ..errors import QuerySyntaxError
from .ast import (
    Query, FilterExpr, Comparison, Exists, IsEmpty, Not, And, Or,
    OrderItem, Operator,
)
from .tokens import Token, TokenKind, tokenize


class Parser:
    """Parser over a token list. Create one per query."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # -------------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------------

    def _peek(self) -> Optional[Token]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _at_keyword(self, *words: str) -> bool:
        token = self._peek()
        return token is not None and token.is_keyword(*words)

    def _error(self, message: str, expected: str) -> QuerySyntaxError:
        token = self._peek()
        if token is None:
            end = self.tokens[-1].position + 1 if self.tokens else 0
            return QuerySyntaxError(message, end, expected, None)
        return QuerySyntaxError(message, token.position, expected, token.describe())

    def _expect_keyword(self, word: str) -> Token:
        if not self._at_keyword(word):
            raise self._error(f"Expected '{word}'", f"'{word}'")
        return self._advance()

    def _expect(self, kind: TokenKind, expected: str) -> Token:
        token = self._peek()
        if token is None or token.kind != kind:
            raise self._error(f"Expected {expected}", expected)
        return self._advance()

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def parse_query(self) -> Query:
        if not self.tokens:
            raise QuerySyntaxError("Empty query", 0, "'find'", None)

        self._expect_keyword("find")
        query = Query(target=self._parse_target())

        if self._at_keyword("where"):
            self._advance()
            query.filter = self.parse_filter()

        if self._at_keyword("order"):
            self._advance()
            self._expect_keyword("by")
            query.order_by = self._parse_order_list()

        if self._at_keyword("limit"):
            self._advance()
            query.limit = self._parse_count("limit", minimum=1)

        if self._at_keyword("offset"):
            self._advance()
            query.offset = self._parse_count("offset", minimum=0)

        if self._at_keyword("select"):
            self._advance()
            query.select = self._parse_field_list()

        self._expect_end()
        return query

    def _parse_target(self) -> str:
        token = self._peek()
        if token is None or token.kind not in (TokenKind.IDENTIFIER, TokenKind.STRING):
            raise self._error("Missing target tag after 'find'", "tag name or '*'")
        if token.kind == TokenKind.IDENTIFIER and token.value.startswith("-"):
            raise self._error("Invalid target tag", "tag name or '*'")
        return self._advance().value

    def _parse_count(self, clause: str, minimum: int) -> int:
        token = self._peek()
        if token is None or token.kind != TokenKind.NUMBER:
            raise self._error(f"Expected a number after '{clause}'", "number")
        value = token.value
        if not isinstance(value, int) or value < minimum:
            qualifier = "positive" if minimum > 0 else "non-negative"
            raise QuerySyntaxError(
                f"'{clause}' must be a {qualifier} integer",
                token.position, f"{qualifier} integer", token.describe(),
            )
        self._advance()
        return value

    def _parse_order_list(self) -> List[OrderItem]:
        items = [self._parse_order_item()]
        while self._peek() is not None and self._peek().kind == TokenKind.COMMA:
            self._advance()
            items.append(self._parse_order_item())
        return items

    def _parse_order_item(self) -> OrderItem:
        token = self._peek()
        if token is not None and token.kind == TokenKind.MINUS:
            self._advance()
            return OrderItem(self._expect(TokenKind.STRING, "quoted field name").value, descending=True)
        if token is None or token.kind not in (TokenKind.IDENTIFIER, TokenKind.STRING):
            raise self._error("Expected a field to order by", "field name")
        self._advance()
        name = token.value
        if token.kind == TokenKind.IDENTIFIER and name.startswith("-"):
            return OrderItem(name[1:], descending=True)
        return OrderItem(name)

    def _parse_field_list(self) -> List[str]:
        fields = [self._parse_field_name()]
        while self._peek() is not None and self._peek().kind == TokenKind.COMMA:
            self._advance()
            fields.append(self._parse_field_name())
        return fields

    def _expect_end(self) -> None:
        token = self._peek()
        if token is not None:
            raise QuerySyntaxError(
                "Unexpected trailing input", token.position,
                "end of query", token.describe(),
            )

    # -------------------------------------------------------------------------
    # Filter expressions
    # -------------------------------------------------------------------------

    def parse_filter(self) -> FilterExpr:
        return self._parse_or()

    def _parse_or(self) -> FilterExpr:
        left = self._parse_and()
        while self._at_keyword("or"):
            self._advance()
            left = Or(left, self._parse_and())
        return left

    def _parse_and(self) -> FilterExpr:
        left = self._parse_unary()
        while self._at_keyword("and"):
            self._advance()
            left = And(left, self._parse_unary())
        return left

    def _parse_unary(self) -> FilterExpr:
        if self._at_keyword("not"):
            self._advance()
            return Not(self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self) -> FilterExpr:
        token = self._peek()
        if token is not None and token.kind == TokenKind.LPAREN:
            self._advance()
            expr = self.parse_filter()
            self._expect(TokenKind.RPAREN, "')'")
            return expr

        name = self._parse_field_name()

        if self._at_keyword("exists"):
            self._advance()
            return Exists(name)

        if self._at_keyword("is"):
            self._advance()
            if not self._at_keyword("empty", "null"):
                raise self._error("Expected 'empty' or 'null' after 'is'", "'empty' or 'null'")
            self._advance()
            return IsEmpty(name)

        op_token = self._expect(TokenKind.OPERATOR, "operator, 'exists' or 'is'")
        return Comparison(name, Operator.from_string(op_token.value), self._parse_value())

    def _parse_field_name(self) -> str:
        token = self._peek()
        if token is None or token.kind not in (TokenKind.IDENTIFIER, TokenKind.STRING):
            raise self._error("Expected a field name", "field name")
        return self._advance().value

    def _parse_value(self):
        token = self._peek()
        if token is None or token.kind not in (
                TokenKind.STRING, TokenKind.NUMBER, TokenKind.IDENTIFIER):
            raise self._error("Missing comparison value", "value")
        return self._advance().value


# =============================================================================
# Convenience functions
# =============================================================================

def parse(tokens: List[Token]) -> Query:
    """Parse a token list into a Query."""
    return Parser(tokens).parse_query()


def parse_query(text: str) -> Query:
    """Tokenize and parse query text."""
    return parse(tokenize(text))


def parse_filter(text: str) -> FilterExpr:
    """Parse a bare filter expression such as "Status = Done and Priority > 2"."""
    parser = Parser(tokenize(text))
    if not parser.tokens:
        raise QuerySyntaxError("Empty filter", 0, "field name", None)
    expr = parser.parse_filter()
    parser._expect_end()
    return expr
