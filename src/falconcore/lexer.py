"""
FalconCore Lexer
Turns source text into a lazy stream of tokens
"""

import math
from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import LexError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class TokenType(Enum):
    # Literals
    NUMBER = auto()
    FLOAT = auto()
    STRING = auto()
    IDENTIFIER = auto()

    # Keywords
    LET = auto()
    CONST = auto()
    SECURE_LET = auto()
    SECURE_CONST = auto()
    FN = auto()
    RETURN = auto()
    IF = auto()
    ELSEIF = auto()
    ELSE = auto()
    ENDIF = auto()
    REPEAT = auto()
    ENDREPEAT = auto()
    BREAK = auto()
    CONTINUE = auto()
    PRINT = auto()
    AND = auto()
    OR = auto()
    NOT = auto()

    # Built-in call markers
    NETWORK_SCAN = auto()
    CRYPTO_RANDOM = auto()
    TIME_NOW = auto()
    WAIT = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    EQUAL = auto()
    NOT_EQUAL = auto()
    GREATER = auto()
    LESS = auto()
    GREATER_EQUAL = auto()
    LESS_EQUAL = auto()
    ASSIGN = auto()

    # Punctuation
    LEFT_PAREN = auto()
    RIGHT_PAREN = auto()
    LEFT_BRACE = auto()
    RIGHT_BRACE = auto()
    LEFT_BRACKET = auto()
    RIGHT_BRACKET = auto()
    COMMA = auto()
    COLON = auto()
    SEMICOLON = auto()

    EOF = auto()


BUILTIN_TOKENS = {
    TokenType.NETWORK_SCAN: "network.scan",
    TokenType.CRYPTO_RANDOM: "crypto.random",
    TokenType.TIME_NOW: "time.now",
    TokenType.WAIT: "wait",
}


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    line: int
    column: int


KEYWORDS: Dict[str, TokenType] = {
    'let': TokenType.LET,
    'const': TokenType.CONST,
    'fn': TokenType.FN,
    'return': TokenType.RETURN,
    'if': TokenType.IF,
    'elseif': TokenType.ELSEIF,
    'else': TokenType.ELSE,
    'endif': TokenType.ENDIF,
    'repeat': TokenType.REPEAT,
    'endrepeat': TokenType.ENDREPEAT,
    'break': TokenType.BREAK,
    'continue': TokenType.CONTINUE,
    'print': TokenType.PRINT,
    'and': TokenType.AND,
    'or': TokenType.OR,
    'not': TokenType.NOT,
    'wait': TokenType.WAIT,
}

# namespace word -> [(separator, continuation word, token type)]
# a separator of ' ' means "one or more whitespace characters"
COMPOUND_KEYWORDS: Dict[str, List[Tuple[str, str, TokenType]]] = {
    'secure': [(' ', 'let', TokenType.SECURE_LET), (' ', 'const', TokenType.SECURE_CONST)],
    'network': [('.', 'scan', TokenType.NETWORK_SCAN)],
    'crypto': [('.', 'random', TokenType.CRYPTO_RANDOM)],
    'time': [('.', 'now', TokenType.TIME_NOW)],
}

OPERATORS: Dict[str, TokenType] = {
    '==': TokenType.EQUAL,
    '!=': TokenType.NOT_EQUAL,
    '<=': TokenType.LESS_EQUAL,
    '>=': TokenType.GREATER_EQUAL,
}

SINGLE_CHAR_TOKENS: Dict[str, TokenType] = {
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.MULTIPLY,
    '/': TokenType.DIVIDE,
    '=': TokenType.ASSIGN,
    '<': TokenType.LESS,
    '>': TokenType.GREATER,
    '!': TokenType.NOT,
    '(': TokenType.LEFT_PAREN,
    ')': TokenType.RIGHT_PAREN,
    '{': TokenType.LEFT_BRACE,
    '}': TokenType.RIGHT_BRACE,
    '[': TokenType.LEFT_BRACKET,
    ']': TokenType.RIGHT_BRACKET,
    ',': TokenType.COMMA,
    ':': TokenType.COLON,
    ';': TokenType.SEMICOLON,
}

ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"'}


def is_digit(char: str) -> bool:
    return char != '' and char in '0123456789'


class Lexer:
    """Single-use scanner; build a new one to tokenize new text."""

    def __init__(self, source: str):
        self.source = source
        self.position = 0
        self.line = 1
        self.column = 1

    def current_char(self) -> Optional[str]:
        if self.position >= len(self.source):
            return None
        return self.source[self.position]

    def peek_char(self, offset: int = 1) -> Optional[str]:
        peek_pos = self.position + offset
        if peek_pos >= len(self.source):
            return None
        return self.source[peek_pos]

    def advance(self) -> Optional[str]:
        char = self.current_char()
        self.position += 1
        if char == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return char

    def checkpoint(self) -> Tuple[int, int, int]:
        return (self.position, self.line, self.column)

    def restore(self, state: Tuple[int, int, int]):
        self.position, self.line, self.column = state

    def error(self, message: str, line: Optional[int] = None, column: Optional[int] = None) -> LexError:
        return LexError(message, line or self.line, column or self.column)

    def skip_whitespace(self):
        while True:
            char = self.current_char()
            if char is not None and char.isspace():
                self.advance()
            elif char == '/' and self.peek_char() == '/':
                while self.current_char() is not None and self.current_char() != '\n':
                    self.advance()
            else:
                return

    def read_string(self, line: int, column: int) -> str:
        self.advance()  # opening quote
        value = ''

        while True:
            char = self.current_char()
            if char is None:
                raise self.error("Unterminated string literal", line, column)
            if char == '"':
                self.advance()
                return value
            if char == '\\':
                self.advance()
                escaped = self.current_char()
                if escaped is None:
                    raise self.error("Unterminated string literal", line, column)
                if escaped not in ESCAPES:
                    raise self.error(f"Unknown escape sequence '\\{escaped}'")
                value += ESCAPES[escaped]
                self.advance()
            else:
                value += char
                self.advance()

    def read_digits(self) -> str:
        digits = ''
        while self.current_char() is not None and is_digit(self.current_char()):
            digits += self.advance()
        return digits

    def read_number(self, line: int, column: int) -> Token:
        text = self.read_digits()
        is_float = False

        if self.current_char() == '.':
            if not is_digit(self.peek_char() or ''):
                raise self.error(f"Malformed number literal '{text}.'", line, column)
            self.advance()
            text += '.' + self.read_digits()
            is_float = True
            if self.current_char() == '.':
                raise self.error(f"Malformed number literal '{text}.': more than one decimal point",
                                 line, column)

        following = self.current_char()
        if following is not None and (following.isalpha() or following == '_'):
            raise self.error(f"Malformed number literal '{text}{following}'", line, column)

        if is_float:
            value = float(text)
            if math.isinf(value):
                raise self.error(f"Float literal {text} is out of range", line, column)
            return Token(TokenType.FLOAT, value, line, column)

        value = int(text)
        if value > INT64_MAX:
            raise self.error(f"Integer literal {text} does not fit in 64 bits", line, column)
        return Token(TokenType.NUMBER, value, line, column)

    def read_identifier(self) -> str:
        value = ''
        while (self.current_char() is not None and
               (self.current_char().isalnum() or self.current_char() == '_')):
            value += self.advance()
        return value

    def match_compound(self, namespace: str) -> Optional[Tuple[TokenType, str]]:
        """
        Try the continuations registered for `namespace`.

        The cursor is restored on every failed attempt, so a near miss such as
        `secure letter` leaves `letter` to be scanned as its own token.
        """
        start = self.checkpoint()
        for separator, word, token_type in COMPOUND_KEYWORDS[namespace]:
            self.restore(start)
            char = self.current_char()
            if separator == ' ':
                if char is None or not char.isspace():
                    continue
                self.skip_whitespace()
            elif char == separator:
                self.advance()
            else:
                continue
            if self.read_identifier() == word:
                return token_type, f"{namespace}{separator}{word}"
        self.restore(start)
        return None

    def read_word(self, line: int, column: int) -> Token:
        word = self.read_identifier()

        if word in COMPOUND_KEYWORDS:
            matched = self.match_compound(word)
            if matched is not None:
                token_type, lexeme = matched
                return Token(token_type, lexeme, line, column)

        token_type = KEYWORDS.get(word, TokenType.IDENTIFIER)
        return Token(token_type, word, line, column)

    def next_token(self) -> Token:
        self.skip_whitespace()

        line = self.line
        column = self.column
        char = self.current_char()

        if char is None:
            return Token(TokenType.EOF, '', line, column)

        if char == '"':
            return Token(TokenType.STRING, self.read_string(line, column), line, column)

        if is_digit(char):
            return self.read_number(line, column)

        if char.isalpha() or char == '_':
            return self.read_word(line, column)

        two_char = char + (self.peek_char() or '')
        if two_char in OPERATORS:
            self.advance()
            self.advance()
            return Token(OPERATORS[two_char], two_char, line, column)

        if char in SINGLE_CHAR_TOKENS:
            self.advance()
            return Token(SINGLE_CHAR_TOKENS[char], char, line, column)

        raise self.error(f"Unexpected character {char!r}", line, column)

    def tokenize(self) -> List[Token]:
        tokens = []
        while True:
            token = self.next_token()
            tokens.append(token)
            if token.type == TokenType.EOF:
                return tokens

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                return


def tokenize(source: str) -> Iterator[Token]:
    """Yield tokens for `source`, ending with EOF."""
    return iter(Lexer(source))
