"""
Royalguard Filter Parser

Recursive descent parser turning a token sequence into a FilterExpr tree.

Grammar (lowest to highest precedence):

    expr      ::= or_expr
    or_expr   ::= and_expr ( 'or' and_expr )*
    and_expr  ::= primary ( 'and' primary )*
    primary   ::= '(' expr ')' | predicate
    predicate ::= field_ref operator value
    field_ref ::= identifier | string | '$' 'name' | '.'
    operator  ::= 'is' | 'contains' | 'matches'
    value     ::= string | identifier

`and` binds tighter than `or`, both are left-associative, and parentheses
produce a Group node. Patterns for `matches` are compiled here so an invalid
regular expression is reported before anything is evaluated.

The same cursor also reads record specs, shared by `set` and import lines:

    record_spec ::= value ( field_spec )*
    field_spec  ::= [modifier] value [modifier] '=' value
    modifier    ::= 'sensitive' | 'secret'
"""

import re
from typing import Iterable, List, Optional, Tuple

from .errors import InvalidPattern, ParseError
from .filters import And, FieldRef, FilterExpr, Group, Operator, Or, Predicate
from .lexer import Token, TokenKind, tokenize
from .records import Field

# Special references allowed after '$'
NAME_REFERENCE = "name"

# Words marking a field as sensitive in a record spec
MODIFIERS = frozenset({"sensitive", "secret"})

OPERATORS = {
    "is": Operator.IS,
    "contains": Operator.CONTAINS,
    "matches": Operator.MATCHES,
}


class Parser:
    """
    Recursive descent parser over a materialised token list.

    The token list must end with an END token (tokenize() always provides
    one); a list without it gets one appended at the position after the last
    token.
    """

    def __init__(self, tokens: Iterable[Token]):
        self.tokens: List[Token] = list(tokens)
        if not self.tokens or self.tokens[-1].kind is not TokenKind.END:
            end = self.tokens[-1].position + len(self.tokens[-1].text) if self.tokens else 0
            self.tokens.append(Token(TokenKind.END, "", end))
        self.pos = 0

    # ==========================================================================
    # TOKEN CURSOR
    # ==========================================================================

    def current(self) -> Token:
        return self.tokens[min(self.pos, len(self.tokens) - 1)]

    def peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.current()
        if token.kind is not TokenKind.END:
            self.pos += 1
        return token

    def at_end(self) -> bool:
        return self.current().kind is TokenKind.END

    def error(self, expected: str, token: Optional[Token] = None) -> ParseError:
        token = token or self.current()
        return ParseError(f"expected {expected}, found {token.describe()}", token.position)

    # ==========================================================================
    # GRAMMAR RULES
    # ==========================================================================

    def parse(self) -> FilterExpr:
        """
        Parse a complete filter expression.

        Raises:
            ParseError: On any grammar violation, including trailing tokens
            InvalidPattern: If a `matches` value is not a valid pattern
        """
        expr = self.parse_or()
        if not self.at_end():
            token = self.current()
            if token.is_punct(")"):
                raise ParseError("unbalanced ')'", token.position)
            raise ParseError(f"unexpected {token.describe()}", token.position)
        return expr

    def parse_or(self) -> FilterExpr:
        left = self.parse_and()
        while self.current().is_keyword("or"):
            self.advance()
            right = self.parse_and()
            left = Or(left, right)
        return left

    def parse_and(self) -> FilterExpr:
        left = self.parse_primary()
        while self.current().is_keyword("and"):
            self.advance()
            right = self.parse_primary()
            left = And(left, right)
        return left

    def parse_primary(self) -> FilterExpr:
        token = self.current()
        if token.is_punct("("):
            self.advance()
            inner = self.parse_or()
            closing = self.current()
            if not closing.is_punct(")"):
                raise ParseError(
                    f"unbalanced '(': expected ')', found {closing.describe()}",
                    closing.position,
                )
            self.advance()
            return Group(inner)
        return self.parse_predicate()

    def parse_predicate(self) -> Predicate:
        field_ref = self.parse_field_ref()

        op_token = self.current()
        if op_token.kind is not TokenKind.KEYWORD or op_token.text not in OPERATORS:
            raise self.error("an operator (is, contains, matches)")
        self.advance()
        operator = OPERATORS[op_token.text]

        value_token = self.current()
        if not value_token.is_value:
            raise self.error("a value")
        self.advance()

        try:
            return Predicate.build(field_ref, operator, value_token.text)
        except re.error as exc:
            raise InvalidPattern(value_token.text, str(exc), value_token.position) from exc

    def parse_field_ref(self) -> FieldRef:
        token = self.current()

        if token.is_punct("."):
            self.advance()
            return FieldRef.record_name()

        if token.is_punct("$"):
            self.advance()
            ref = self.current()
            if ref.kind is not TokenKind.IDENTIFIER or ref.text.lower() != NAME_REFERENCE:
                raise ParseError(
                    f"unknown reference after '$': {ref.describe()}", ref.position
                )
            self.advance()
            return FieldRef.record_name()

        if token.is_value:
            self.advance()
            return FieldRef(token.text)

        raise self.error("a field name")

    # ==========================================================================
    # RECORD SPECS
    # ==========================================================================

    def expect_value(self, expected: str) -> Token:
        token = self.current()
        if not token.is_value:
            raise self.error(expected)
        self.advance()
        return token

    def expect_name(self, expected: str = "a record name") -> str:
        """Consume a non-empty identifier or string."""
        token = self.expect_value(expected)
        if not token.text:
            raise ParseError(f"{expected} must not be empty", token.position)
        return token.text

    def parse_record_spec(self) -> Tuple[str, List[Field]]:
        """
        Parse `<name> [[sensitive] <field> [sensitive] = <value>]...` up to
        the end of input.

        Returns:
            Tuple[str, List[Field]]: Record name and fields in input order

        Raises:
            ParseError: Missing pieces, empty name or key, or a key given twice
        """
        name = self.expect_name()
        fields: List[Field] = []
        seen = set()

        while not self.at_end():
            sensitive = self._take_modifier(before_key=True)

            key_token = self.current()
            key = self.expect_name("a field name")
            if key in seen:
                raise ParseError(f"field '{key}' given more than once", key_token.position)
            seen.add(key)

            if self._take_modifier(before_key=False):
                sensitive = True

            if not self.current().is_punct("="):
                raise self.error("'='")
            self.advance()

            value = self.expect_value("a value")
            fields.append(Field(key, value.text, sensitive))

        return name, fields

    def _take_modifier(self, before_key: bool) -> bool:
        # Before the key a modifier word directly followed by '=' is the key itself
        token = self.current()
        if token.kind is not TokenKind.IDENTIFIER or token.text.lower() not in MODIFIERS:
            return False
        if before_key and self.peek().is_punct("="):
            return False
        self.advance()
        return True


# ==============================================================================
# MODULE-LEVEL ENTRY POINTS
# ==============================================================================

def parse(tokens: Iterable[Token]) -> FilterExpr:
    """
    Parse tokens into a filter expression.

    Args:
        tokens: Token sequence, typically the result of tokenize()

    Returns:
        FilterExpr: Root of the expression tree

    Raises:
        LexError: If the tokens come from a lazy stream that fails to lex
        ParseError: On grammar violations (with the offending position)
    """
    return Parser(tokens).parse()


def parse_filter(text: str) -> FilterExpr:
    """Lex and parse a filter expression string."""
    return parse(tokenize(text))
