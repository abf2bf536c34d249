"""
Royalguard Lexer

Turns a raw command or filter string into tokens. The lexer knows nothing
about commands; command words such as `set` or `show` come out as plain
identifiers and are recognised later by the command parser.

Token kinds:
- IDENTIFIER: maximal run of characters that are not whitespace, quotes,
  parentheses or '='
- STRING: text between single or double quotes, with backslash escaping of
  the delimiter and of backslash itself
- KEYWORD: is, contains, matches, and, or (case-insensitive, stored lower case)
- PUNCT: ( ) = $ and a standalone .
- END: sentinel at the end of the input

Tokens are produced lazily by a restartable TokenStream: iterating it twice
lexes the text twice and yields the same tokens.
"""

from enum import Enum
from typing import Iterator, NamedTuple, Tuple

from .errors import LexError

# ==============================================================================
# LEXICAL CONSTANTS
# ==============================================================================

# Reserved words of the filter language (matched case-insensitively)
KEYWORDS = frozenset({"is", "contains", "matches", "and", "or"})

# Characters that always form a single-character token
SINGLE_PUNCT = frozenset("()=$")

# Characters that end an identifier run
IDENTIFIER_STOP = frozenset("()='\"")

QUOTES = frozenset("'\"")

ESCAPE = "\\"


class TokenKind(Enum):
    IDENTIFIER = "identifier"
    STRING = "string"
    KEYWORD = "keyword"
    PUNCT = "punctuation"
    END = "end of input"


class Token(NamedTuple):
    """A lexed token; position is the character offset in the source text."""

    kind: TokenKind
    text: str
    position: int

    def is_punct(self, symbol: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text == symbol

    def is_keyword(self, word: str) -> bool:
        return self.kind is TokenKind.KEYWORD and self.text == word

    @property
    def is_value(self) -> bool:
        """True for tokens usable as a name, key or value."""
        return self.kind in (TokenKind.IDENTIFIER, TokenKind.STRING)

    def describe(self) -> str:
        if self.kind is TokenKind.END:
            return "end of input"
        return f"{self.kind.value} '{self.text}'"


# ==============================================================================
# TOKEN STREAM
# ==============================================================================

class TokenStream:
    """
    Lazy, restartable sequence of tokens for one input string.

    Iteration re-runs the scanner from the first character, so the stream can
    be consumed any number of times. A LexError is raised at the point of
    iteration where the bad character is reached.
    """

    def __init__(self, text: str):
        self.text = text

    def __iter__(self) -> Iterator[Token]:
        return _scan(self.text)

    def __repr__(self) -> str:
        return f"TokenStream({self.text!r})"


def tokenize(text: str) -> TokenStream:
    """
    Tokenize a command or filter string.

    Args:
        text (str): Raw input line

    Returns:
        TokenStream: Restartable lazy token sequence ending with an END token

    Raises:
        LexError: While iterating, on an unterminated string literal or a
            non-printable character
    """
    return TokenStream(text)


# ==============================================================================
# SCANNER
# ==============================================================================

def _scan(text: str) -> Iterator[Token]:
    pos = 0
    length = len(text)

    while True:
        # Skip whitespace between tokens
        while pos < length and text[pos].isspace():
            pos += 1

        if pos >= length:
            yield Token(TokenKind.END, "", length)
            return

        char = text[pos]

        if not char.isprintable():
            raise LexError(f"unrecognised character {char!r}", pos)

        if char in QUOTES:
            token, pos = _scan_string(text, pos)
            yield token
            continue

        if char in SINGLE_PUNCT:
            yield Token(TokenKind.PUNCT, char, pos)
            pos += 1
            continue

        # A dot followed by a separator is the name wildcard; otherwise it starts an identifier
        if char == "." and _is_boundary(text, pos + 1):
            yield Token(TokenKind.PUNCT, ".", pos)
            pos += 1
            continue

        token, pos = _scan_identifier(text, pos)
        yield token


def _is_boundary(text: str, pos: int) -> bool:
    return pos >= len(text) or text[pos].isspace() or text[pos] in IDENTIFIER_STOP


def _scan_string(text: str, start: int) -> Tuple[Token, int]:
    delimiter = text[start]
    chars = []
    pos = start + 1

    while pos < len(text):
        char = text[pos]

        if char == ESCAPE and pos + 1 < len(text) and text[pos + 1] in (delimiter, ESCAPE):
            chars.append(text[pos + 1])
            pos += 2
            continue

        if char == delimiter:
            return Token(TokenKind.STRING, "".join(chars), start), pos + 1

        if not char.isprintable() and not char.isspace():
            raise LexError(f"unrecognised character {char!r} in string literal", pos)

        chars.append(char)
        pos += 1

    raise LexError("unterminated string literal", start)


def _scan_identifier(text: str, start: int) -> Tuple[Token, int]:
    pos = start

    while pos < len(text):
        char = text[pos]
        if char.isspace() or char in IDENTIFIER_STOP:
            break
        if not char.isprintable():
            raise LexError(f"unrecognised character {char!r}", pos)
        pos += 1

    word = text[start:pos]

    if word.lower() in KEYWORDS:
        return Token(TokenKind.KEYWORD, word.lower(), start), pos

    return Token(TokenKind.IDENTIFIER, word, start), pos
