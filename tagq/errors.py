"""
Error types for tagq.

Every failure raised by the query pipeline derives from TagqError so callers
(and the CLI) can catch the whole family in one place:

- LexicalError: unterminated string or invalid character in query text
- QuerySyntaxError: malformed grammar
- SchemaError: unknown tag, unknown field, or an inheritance cycle
- TypeCoercionError: a literal that cannot be compared against a field's type
- ExecutionError: the store rejected or failed a compiled statement
"""

from typing import List, Optional, Sequence


class TagqError(Exception):
    """Base class for all tagq errors."""
    pass


# =============================================================================
# Query text errors
# =============================================================================

class LexicalError(TagqError):
    """Raised by the tokenizer on input it cannot consume."""

    def __init__(self, message: str, position: int):
        self.message = message
        self.position = position
        super().__init__(f"{message} at position {position}")


class QuerySyntaxError(TagqError):
    """Raised by the parser when tokens do not form a valid query."""

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        expected: Optional[str] = None,
        found: Optional[str] = None,
    ):
        self.message = message
        self.position = position
        self.expected = expected
        self.found = found

        detail = message
        if expected is not None:
            detail += f": expected {expected}, found {found or 'end of query'}"
        if position is not None:
            detail += f" (position {position})"
        super().__init__(detail)


# =============================================================================
# Schema errors
# =============================================================================

class SchemaError(TagqError):
    """Raised when a query refers to schema that does not exist or is invalid."""
    pass


class TagNotFoundError(SchemaError):
    def __init__(self, tag_name: str, suggestions: Sequence[str] = ()):
        self.tag_name = tag_name
        self.suggestions = list(suggestions)
        message = f"Tag not found: {tag_name}"
        if self.suggestions:
            message += f" (did you mean: {', '.join(self.suggestions)}?)"
        super().__init__(message)


class FieldNotFoundError(SchemaError):
    def __init__(self, field_name: str, tag_name: Optional[str] = None,
                 available: Sequence[str] = ()):
        self.field_name = field_name
        self.tag_name = tag_name
        self.available = list(available)
        message = f"Field not found: {field_name}"
        if tag_name:
            message += f" on tag {tag_name}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class InheritanceCycleError(SchemaError):
    """The tag-parent graph reachable from a tag contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Inheritance cycle detected: {' -> '.join(cycle)}")


# =============================================================================
# Compilation / execution errors
# =============================================================================

class TypeCoercionError(TagqError):
    """A comparison literal cannot be coerced to the field's inferred type."""

    def __init__(self, field_name: str, value, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot compare field '{field_name}' with {value!r}: {reason}")


class ExecutionError(TagqError):
    """The store rejected or failed a compiled query."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)
