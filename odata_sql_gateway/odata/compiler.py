"""Single-table OData subset compiler producing parameterized T-SQL."""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from ..errors import ValidationError
from ..models import CompiledQuery
from ..security import quote_identifier, quote_table_ref


class Token(NamedTuple):
    kind: str
    value: str
    position: int


TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<datetime>datetime'(?P<datetime_value>[^']*)')
    |(?P<string>'(?:[^']|'')*')
    |(?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    |(?P<name>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<comma>,)
    """,
    re.VERBOSE,
)

COMPARISON_OPERATORS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "ge": ">=",
    "lt": "<",
    "le": "<=",
}

# name -> (SQL template, arity)
VALUE_FUNCTIONS = {
    "tolower": ("LOWER({0})", 1),
    "toupper": ("UPPER({0})", 1),
    "trim": ("LTRIM(RTRIM({0}))", 1),
    "length": ("LEN({0})", 1),
}

# name -> LIKE pattern template
LIKE_FUNCTIONS = {
    "contains": "%{0}%",
    "startswith": "{0}%",
    "endswith": "%{0}",
}

ORDERBY_ITEM = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)(?:\s+(asc|desc))?\s*$", re.IGNORECASE)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so a literal matches itself (used with ESCAPE '\\')."""
    return re.sub(r"([\\%_\[])", r"\\\1", value)


def tokenize(text: str) -> List[Token]:
    tokens = []
    position = 0
    while position < len(text):
        match = TOKEN_PATTERN.match(text, position)
        if not match:
            raise ValidationError(
                f"Unexpected character in $filter at position {position}: {text[position]!r}",
                field="$filter",
                error_code="INVALID_FILTER"
            )
        kind = match.lastgroup
        if kind == "datetime_value":
            kind = "datetime"
        if kind != "ws":
            value = match.group("datetime_value") if kind == "datetime" else match.group(kind)
            tokens.append(Token(kind, value, position))
        position = match.end()
    return tokens


class _Operand(NamedTuple):
    sql: str
    is_null: bool = False
    is_boolean: bool = False
    literal: Any = None
    is_string_literal: bool = False
    parameter_index: Optional[int] = None


class FilterParser:
    """
    Recursive-descent parser for $filter expressions.

    Literals are emitted as '?' markers and collected in ``parameters`` in
    the order they appear in the generated SQL.
    """

    def __init__(self, text: str, columns: Dict[str, str]):
        self.text = text
        self.columns = columns
        self.tokens = tokenize(text)
        self.index = 0
        self.parameters: List[Any] = []

    def _error(self, message: str) -> ValidationError:
        return ValidationError(f"Invalid $filter: {message}", field="$filter", error_code="INVALID_FILTER")

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _peek_keyword(self) -> Optional[str]:
        token = self._peek()
        return token.value.lower() if token and token.kind == "name" else None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise self._error("unexpected end of expression")
        self.index += 1
        return token

    def _expect(self, kind: str) -> Token:
        token = self._advance()
        if token.kind != kind:
            raise self._error(f"expected {kind} at position {token.position}, got {token.value!r}")
        return token

    def parse(self) -> Tuple[str, List[Any]]:
        if not self.tokens:
            raise self._error("empty expression")
        sql = self._parse_or()
        token = self._peek()
        if token is not None:
            raise self._error(f"unexpected {token.value!r} at position {token.position}")
        return sql, self.parameters

    def _parse_or(self) -> str:
        parts = [self._parse_and()]
        while self._peek_keyword() == "or":
            self._advance()
            parts.append(self._parse_and())
        return parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")"

    def _parse_and(self) -> str:
        parts = [self._parse_unary()]
        while self._peek_keyword() == "and":
            self._advance()
            parts.append(self._parse_unary())
        return parts[0] if len(parts) == 1 else "(" + " AND ".join(parts) + ")"

    def _parse_unary(self) -> str:
        if self._peek_keyword() == "not":
            self._advance()
            return f"NOT ({self._parse_unary()})"

        token = self._peek()
        if token is not None and token.kind == "lparen":
            self._advance()
            inner = self._parse_or()
            self._expect("rparen")
            return f"({inner})"

        return self._parse_comparison()

    def _parse_comparison(self) -> str:
        left = self._parse_operand()
        keyword = self._peek_keyword()

        if keyword not in COMPARISON_OPERATORS:
            if left.is_boolean:
                return left.sql
            token = self._peek()
            found = repr(token.value) if token else "end of expression"
            raise self._error(f"expected comparison operator, got {found}")

        self._advance()
        right = self._parse_operand()

        if left.is_boolean or right.is_boolean:
            return self._compare_predicate(keyword, left, right)

        if left.is_null and right.is_null:
            raise self._error("cannot compare null with null")
        if right.is_null or left.is_null:
            subject = left if right.is_null else right
            if keyword == "eq":
                return f"{subject.sql} IS NULL"
            if keyword == "ne":
                return f"{subject.sql} IS NOT NULL"
            raise self._error(f"'{keyword}' cannot be used with null")

        return f"{left.sql} {COMPARISON_OPERATORS[keyword]} {right.sql}"

    def _compare_predicate(self, keyword: str, left: _Operand, right: _Operand) -> str:
        # Only "predicate eq|ne true|false" has a T-SQL equivalent
        predicate, other = (left, right) if left.is_boolean else (right, left)
        if other.is_boolean or keyword not in ("eq", "ne") or not isinstance(other.literal, bool):
            raise self._error("boolean functions can only be compared with true or false using eq or ne")
        del self.parameters[other.parameter_index]
        if (keyword == "eq") == other.literal:
            return predicate.sql
        return f"NOT ({predicate.sql})"

    def _literal(self, value: Any, is_string: bool = False) -> _Operand:
        self.parameters.append(value)
        return _Operand("?", literal=value, is_string_literal=is_string, parameter_index=len(self.parameters) - 1)

    def _parse_operand(self) -> _Operand:
        token = self._advance()

        if token.kind == "string":
            return self._literal(token.value[1:-1].replace("''", "'"), is_string=True)

        if token.kind == "number":
            return self._literal(self._parse_number(token.value))

        if token.kind == "datetime":
            return self._literal(self._parse_datetime(token.value))

        if token.kind != "name":
            raise self._error(f"unexpected {token.value!r} at position {token.position}")

        keyword = token.value.lower()
        next_token = self._peek()
        if next_token is not None and next_token.kind == "lparen":
            return self._parse_function(keyword, token)
        if keyword == "null":
            return _Operand("NULL", is_null=True)
        if keyword in ("true", "false"):
            return self._literal(keyword == "true")
        return _Operand(self._column(token.value))

    def _parse_number(self, text: str) -> Any:
        if re.fullmatch(r"-?\d+", text):
            return int(text)
        try:
            return Decimal(text)
        except InvalidOperation:
            raise self._error(f"invalid number {text!r}") from None

    def _parse_datetime(self, text: str) -> datetime:
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise self._error(f"invalid datetime literal {text!r}") from None

    def _column(self, name: str) -> str:
        canonical = self.columns.get(name.lower())
        if canonical is None:
            raise ValidationError(
                f"Unknown column in $filter: {name}",
                field="$filter",
                error_code="INVALID_COLUMN"
            )
        return quote_identifier(canonical)

    def _parse_arguments(self) -> List[_Operand]:
        self._expect("lparen")
        arguments = [self._parse_operand()]
        while self._peek() is not None and self._peek().kind == "comma":
            self._advance()
            arguments.append(self._parse_operand())
        self._expect("rparen")
        return arguments

    def _parse_function(self, name: str, token: Token) -> _Operand:
        if name in VALUE_FUNCTIONS:
            template, arity = VALUE_FUNCTIONS[name]
            arguments = self._parse_arguments()
            if len(arguments) != arity:
                raise self._error(f"{name}() takes {arity} argument(s)")
            return _Operand(template.format(*(argument.sql for argument in arguments)))

        if name in LIKE_FUNCTIONS:
            # Parse the subject first so its parameters precede the pattern's
            self._expect("lparen")
            subject = self._parse_operand()
            self._expect("comma")
            pattern_token = self._advance()
            self._expect("rparen")
            if pattern_token.kind != "string":
                raise self._error(f"{name}() requires a string literal as its second argument")
            pattern = LIKE_FUNCTIONS[name].format(escape_like(pattern_token.value[1:-1].replace("''", "'")))
            self.parameters.append(pattern)
            return _Operand(f"{subject.sql} LIKE ? ESCAPE '\\'", is_boolean=True)

        raise self._error(f"unsupported function {token.value!r}")


class ODataCompiler:
    """Compiles $select/$filter/$orderby/$top/$skip for one table into T-SQL."""

    def __init__(self, columns: Sequence[str]):
        self.columns = {column.lower(): column for column in columns}

    def compile_filter(self, text: str) -> Tuple[str, List[Any]]:
        return FilterParser(text, self.columns).parse()

    def compile_orderby(self, text: str) -> str:
        items = []
        for item in text.split(","):
            match = ORDERBY_ITEM.match(item)
            if not match:
                raise ValidationError(
                    f"Invalid $orderby item: {item.strip()!r}",
                    field="$orderby",
                    error_code="INVALID_ORDERBY"
                )
            canonical = self.columns.get(match.group(1).lower())
            if canonical is None:
                raise ValidationError(
                    f"Unknown column in $orderby: {match.group(1)}",
                    field="$orderby",
                    error_code="INVALID_COLUMN"
                )
            direction = (match.group(2) or "asc").upper()
            items.append(f"{quote_identifier(canonical)} {direction}")
        return ", ".join(items)

    def compile(
        self,
        schema: str,
        object_name: str,
        select: Sequence[str],
        filter: Optional[str] = None,
        orderby: Optional[str] = None,
        top: int = 10,
        skip: int = 0,
    ) -> CompiledQuery:
        """
        Build the full paged SELECT statement.

        The FROM clause is always emitted as ``FROM [schema].[object]`` so
        callers can recognize and decorate it.
        """
        select_sql = ", ".join(quote_identifier(column) for column in select) if select else "*"
        sql = f"SELECT {select_sql} FROM {quote_table_ref(schema, object_name)}"
        parameters: List[Any] = []

        if filter and filter.strip():
            where_sql, where_parameters = self.compile_filter(filter)
            sql += f" WHERE {where_sql}"
            parameters.extend(where_parameters)

        order_sql = self.compile_orderby(orderby) if orderby and orderby.strip() else "(SELECT 0)"
        sql += f" ORDER BY {order_sql} OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
        parameters.extend([skip, top])

        return CompiledQuery(sql=sql, parameters=parameters)
