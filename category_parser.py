"""
Boolean category-expression parser.

Turns free-form strings such as ``cs.AI or (cs.LG not cs.CV)`` into a fully
parenthesized expression that can be dropped into an arXiv ``search_query``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class TokenType(Enum):
    IDENT = "IDENT"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    LPAREN = "("
    RPAREN = ")"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str = ""


class EmptyExpressionError(ValueError):
    """Raised when an expression contains nothing to search for."""

    def __init__(self, message: str = "empty expression"):
        super().__init__(message)


# Characters that always form a field of their own
META_CHARACTERS = "()+-|"

KEYWORDS = {
    "AND": TokenType.AND,
    "+": TokenType.AND,
    "OR": TokenType.OR,
    "|": TokenType.OR,
    "NOT": TokenType.NOT,
    "-": TokenType.NOT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
}

CATEGORY_PREFIX = "cat:"
DEFAULT_SEPARATOR = "+"


def lex(expression: str) -> List[Token]:
    """
    Split an expression into tokens.

    Keywords are matched case-insensitively; every other field becomes an
    identifier with its original spelling. The list always ends with EOF.
    """
    for char in META_CHARACTERS:
        expression = expression.replace(char, f" {char} ")

    tokens = []
    for field in expression.split():
        token_type = KEYWORDS.get(field.upper(), TokenType.IDENT)
        value = field if token_type is TokenType.IDENT else token_type.value
        tokens.append(Token(token_type, value))
    tokens.append(Token(TokenType.EOF))
    return tokens


class ExpressionParser:
    """
    Recursive-descent parser producing a normalized boolean expression.

    Args:
        prefix: String placed before every identifier
        suffix: String placed after every identifier
        separator: String used to join operands and operators
        strict: If True, an expression without any parts raises
            EmptyExpressionError instead of returning "()"
    """

    def __init__(self, prefix: str = CATEGORY_PREFIX, suffix: str = "",
                 separator: str = DEFAULT_SEPARATOR, strict: bool = True):
        self.prefix = prefix
        self.suffix = suffix
        self.separator = separator
        self.strict = strict

    def parse(self, expression: str) -> str:
        tokens = lex(expression)
        parts, _ = self._parse_group(tokens, 0)
        if not parts and self.strict:
            raise EmptyExpressionError()
        return "(" + self.separator.join(parts) + ")"

    def _parse_group(self, tokens: List[Token], pos: int) -> Tuple[List[str], int]:
        """
        Collect the parts of one nesting level starting at ``pos``.

        Returns the parts and the position of the first token after this
        level, past its closing parenthesis if there was one.
        """
        parts: List[str] = []
        last_is_term = False

        while tokens[pos].type not in (TokenType.RPAREN, TokenType.EOF):
            tok = tokens[pos]

            # Juxtaposed terms ("a b", "a (b)", "(a) b") mean AND
            if last_is_term and tok.type in (TokenType.IDENT, TokenType.LPAREN):
                parts.append(TokenType.AND.value)

            pos += 1
            if tok.type is TokenType.LPAREN:
                nested, pos = self._parse_group(tokens, pos)
                parts.append("(" + self.separator.join(nested) + ")")
                last_is_term = True
            elif tok.type is TokenType.IDENT:
                parts.append(f"{self.prefix}{tok.value}{self.suffix}")
                last_is_term = True
            else:
                parts.append(tok.value)
                last_is_term = False

        if tokens[pos].type is TokenType.RPAREN:
            pos += 1
        return parts, pos


def parse_category_expression(expression: str, separator: str = DEFAULT_SEPARATOR,
                              strict: bool = True) -> str:
    """
    Normalize a category expression for an arXiv search query.

    Example:
        >>> parse_category_expression("cs.AI or (cs.LG not cs.CV)")
        '(cat:cs.AI+OR+(cat:cs.LG+NOT+cat:cs.CV))'
    """
    return ExpressionParser(CATEGORY_PREFIX, "", separator, strict).parse(expression)


def parse_general_expression(expression: str, prefix: str, suffix: str,
                             separator: str = DEFAULT_SEPARATOR,
                             strict: bool = True) -> str:
    """Normalize an expression, decorating each identifier with prefix and suffix."""
    return ExpressionParser(prefix, suffix, separator, strict).parse(expression)
