"""
Condition Engine for row filtering.

Column descriptors may carry a condition over their own cell. A row is loaded only
when every condition holds. Conditions use a small SQL-like language where the cell
is referenced as `field`:

    field = 'W'
    field != 0
    field >= 10.5
    field IN ('1', '2', '3')
    field NOT IN ('?', 'X')
    field IS EMPTY
    field IS NOT EMPTY
    field LIKE 'SUBJ_%'
    field IS NOT EMPTY AND NOT field IN ('N/A')
    (field = 'A' OR field = 'B') AND field != 'C'

Expressions are parsed once into a typed syntax tree and evaluated without any
dynamic code execution.
"""

import logging
import re

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from ..exceptions import ConfigurationError
from ..utils import StringUtils, ValidationUtils


Literal = Union[str, float]

_TOKEN_PATTERN = re.compile(
    r"""\s*(?:
        (?P<string>'[^']*'|"[^"]*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op>!=|<>|<=|>=|==|=|<|>)
      | (?P<punct>[(),])
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    )""",
    re.VERBOSE,
)

_KEYWORDS = {'AND', 'OR', 'NOT', 'IN', 'IS', 'EMPTY', 'NULL', 'LIKE'}
_CELL_REFERENCE = 'FIELD'


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int


def _cell_text(value: Any) -> str:
    # Spreadsheet adapters return whole numbers as floats (1.0); compare them as '1'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class ConditionNode(ABC):
    """Node of a parsed condition expression."""

    @abstractmethod
    def evaluate(self, value: Any) -> bool:
        pass


@dataclass(frozen=True)
class Comparison(ConditionNode):
    operator: str
    literal: Literal

    def evaluate(self, value: Any) -> bool:
        if value is None:
            return self.operator == '!='

        if isinstance(self.literal, float):
            number = ValidationUtils.safe_float_conversion(value)
            if number is None:
                return self.operator == '!='
            left, right = number, self.literal
        else:
            left, right = _cell_text(value), self.literal

        if self.operator == '=':
            return left == right
        if self.operator == '!=':
            return left != right
        if self.operator == '<':
            return left < right
        if self.operator == '<=':
            return left <= right
        if self.operator == '>':
            return left > right
        return left >= right


@dataclass(frozen=True)
class Membership(ConditionNode):
    values: Tuple[Literal, ...]
    negated: bool = False

    def evaluate(self, value: Any) -> bool:
        found = any(Comparison('=', literal).evaluate(value) for literal in self.values)
        return not found if self.negated else found


@dataclass(frozen=True)
class BlankCheck(ConditionNode):
    negated: bool = False

    def evaluate(self, value: Any) -> bool:
        blank = StringUtils.is_blank(value)
        return not blank if self.negated else blank


@dataclass(frozen=True)
class Like(ConditionNode):
    pattern: str
    negated: bool = False

    def evaluate(self, value: Any) -> bool:
        matched = value is not None and self._regex().match(_cell_text(value)) is not None
        return not matched if self.negated else matched

    def _regex(self):
        # % matches any sequence, _ matches one character; everything else is literal
        parts = []
        for char in self.pattern:
            if char == '%':
                parts.append('.*')
            elif char == '_':
                parts.append('.')
            else:
                parts.append(re.escape(char))
        return re.compile('^' + ''.join(parts) + '$', re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Conjunction(ConditionNode):
    children: Tuple[ConditionNode, ...]

    def evaluate(self, value: Any) -> bool:
        return all(child.evaluate(value) for child in self.children)


@dataclass(frozen=True)
class Disjunction(ConditionNode):
    children: Tuple[ConditionNode, ...]

    def evaluate(self, value: Any) -> bool:
        return any(child.evaluate(value) for child in self.children)


@dataclass(frozen=True)
class Negation(ConditionNode):
    child: ConditionNode

    def evaluate(self, value: Any) -> bool:
        return not self.child.evaluate(value)


@dataclass(frozen=True)
class CompiledCondition:
    """A parsed condition bound to the cell it reads."""
    column_index: int
    expression: str
    node: ConditionNode

    def evaluate(self, value: Any) -> bool:
        return self.node.evaluate(value)


class _Parser:
    """Recursive descent parser over the token stream of one expression."""

    def __init__(self, expression: str, tokens: List[Token]):
        self.expression = expression
        self.tokens = tokens
        self.position = 0

    def parse(self) -> ConditionNode:
        node = self._or_expression()
        if self._peek() is not None:
            self._fail(f"unexpected token {self._peek().value!r}")
        return node

    def _or_expression(self) -> ConditionNode:
        children = [self._and_expression()]
        while self._accept_keyword('OR'):
            children.append(self._and_expression())
        return children[0] if len(children) == 1 else Disjunction(tuple(children))

    def _and_expression(self) -> ConditionNode:
        children = [self._not_expression()]
        while self._accept_keyword('AND'):
            children.append(self._not_expression())
        return children[0] if len(children) == 1 else Conjunction(tuple(children))

    def _not_expression(self) -> ConditionNode:
        if self._accept_keyword('NOT'):
            return Negation(self._not_expression())
        return self._primary()

    def _primary(self) -> ConditionNode:
        if self._accept('punct', '('):
            node = self._or_expression()
            self._expect('punct', ')')
            return node
        return self._predicate()

    def _predicate(self) -> ConditionNode:
        token = self._next()
        if token is None or token.kind != 'word' or token.value != _CELL_REFERENCE:
            self._fail("expected 'field'", token)

        if self._accept_keyword('IS'):
            negated = self._accept_keyword('NOT')
            if not (self._accept_keyword('EMPTY') or self._accept_keyword('NULL')):
                self._fail("expected EMPTY or NULL after IS")
            return BlankCheck(negated=negated)

        negated = self._accept_keyword('NOT')
        if self._accept_keyword('IN'):
            return Membership(values=self._literal_list(), negated=negated)
        if self._accept_keyword('LIKE'):
            pattern = self._literal()
            if not isinstance(pattern, str):
                self._fail("LIKE requires a quoted pattern")
            return Like(pattern=pattern, negated=negated)
        if negated:
            self._fail("expected IN or LIKE after NOT")

        operator = self._next()
        if operator is None or operator.kind != 'op':
            self._fail("expected a comparison operator", operator)
        symbol = {'==': '=', '<>': '!='}.get(operator.value, operator.value)
        return Comparison(operator=symbol, literal=self._literal())

    def _literal_list(self) -> Tuple[Literal, ...]:
        self._expect('punct', '(')
        values = [self._literal()]
        while self._accept('punct', ','):
            values.append(self._literal())
        self._expect('punct', ')')
        return tuple(values)

    def _literal(self) -> Literal:
        token = self._next()
        if token is None or token.kind not in ('string', 'number'):
            self._fail("expected a quoted string or number", token)
        return token.value

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def _next(self) -> Optional[Token]:
        token = self._peek()
        if token is not None:
            self.position += 1
        return token

    def _accept(self, kind: str, value: Any) -> bool:
        token = self._peek()
        if token is not None and token.kind == kind and token.value == value:
            self.position += 1
            return True
        return False

    def _accept_keyword(self, keyword: str) -> bool:
        return self._accept('word', keyword)

    def _expect(self, kind: str, value: Any) -> None:
        if not self._accept(kind, value):
            self._fail(f"expected {value!r}", self._peek())

    def _fail(self, reason: str, token: Optional[Token] = None):
        where = f" at position {token.position}" if token is not None else ""
        raise ConfigurationError(f"Invalid condition expression {self.expression!r}: {reason}{where}")


class ConditionEngine:
    """
    Compiles row-filter expressions into condition trees.

    Supported language:
    - Comparisons: =, !=, <>, <, <=, >, >= against quoted strings or numbers
    - Membership: IN (...), NOT IN (...)
    - Blank checks: IS EMPTY, IS NOT EMPTY (IS NULL / IS NOT NULL are synonyms)
    - Patterns: LIKE / NOT LIKE with % and _ wildcards
    - Logical: AND, OR, NOT, parentheses

    Keywords and the `field` cell reference are case-insensitive.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def compile(self, expression: str, column_index: int) -> CompiledCondition:
        """
        Parse a condition expression for the cell at column_index.

        Raises:
            ConfigurationError: If the expression is empty or not valid
        """
        if not StringUtils.safe_string_check(expression):
            raise ConfigurationError("Condition expression cannot be empty")

        node = _Parser(expression, self._tokenize(expression)).parse()
        self.logger.debug(f"Compiled condition for column {column_index}: {expression} -> {node}")
        return CompiledCondition(column_index=column_index, expression=expression, node=node)

    def validate_expression(self, expression: str) -> bool:
        """Return True if the expression compiles."""
        try:
            self.compile(expression, 0)
            return True
        except ConfigurationError:
            return False

    def _tokenize(self, expression: str) -> List[Token]:
        tokens = []
        position = 0
        stripped_length = len(expression.rstrip())
        while position < stripped_length:
            match = _TOKEN_PATTERN.match(expression, position)
            if not match or match.end() == position:
                raise ConfigurationError(
                    f"Invalid condition expression {expression!r}: unexpected character at position {position}"
                )
            kind = match.lastgroup
            text = match.group(kind)
            start = match.start(kind)
            if kind == 'string':
                tokens.append(Token('string', text[1:-1], start))
            elif kind == 'number':
                tokens.append(Token('number', float(text), start))
            elif kind == 'word':
                word = text.upper()
                if word not in _KEYWORDS and word != _CELL_REFERENCE:
                    raise ConfigurationError(
                        f"Invalid condition expression {expression!r}: unknown word {text!r} at position {start}"
                    )
                tokens.append(Token('word', word, start))
            else:
                tokens.append(Token(kind, text, start))
            position = match.end()
        return tokens
