"""
Guard Expressions - Closed grammar, tokenizer and parser

Guard text comes from workflow authors, so it is parsed into a small
tagged AST and never handed to eval()/exec(). The grammar:

    expr       := or
    or         := and ( "||" and )*
    and        := unary ( "&&" unary )*
    unary      := "!" unary | comparison
    comparison := primary ( ("===" | "!==" | ">" | "<" | ">=" | "<=") primary )?
    primary    := literal | path | "(" expr ")"
    literal    := "true" | "false" | "null" | number | string
    path       := ident ( "." ident )*

Anything outside it raises GuardEvaluationError.
"""
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from .errors import GuardEvaluationError


# ============================================================================
# AST
# ============================================================================

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class PropertyAccess:
    path: Tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True)
class BinaryOp:
    """Comparison between two operands"""
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class LogicalOp:
    op: str  # "&&" or "||"
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class UnaryNot:
    operand: "Node"


Node = Union[Literal, PropertyAccess, BinaryOp, LogicalOp, UnaryNot]

COMPARISON_OPERATORS = ("===", "!==", ">=", "<=", ">", "<")
KEYWORDS = {"true": True, "false": False, "null": None}


# ============================================================================
# Tokenizer
# ============================================================================

@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER, STRING, IDENT, OP, LPAREN, RPAREN, DOT, EOF
    text: str
    position: int
    value: Any = None


_NUMBER_RE = re.compile(r"-?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_SYMBOLS = ("===", "!==", "&&", "||", ">=", "<=", ">", "<", "!")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


def tokenize(raw: str) -> List[Token]:
    """Split guard text into tokens"""
    tokens: List[Token] = []
    i = 0
    length = len(raw)

    while i < length:
        ch = raw[i]

        if ch.isspace():
            i += 1
            continue

        if ch in "'\"":
            start = i
            value, i = _read_string(raw, i)
            tokens.append(Token("STRING", raw[start:i], start, value))
            continue

        # A leading '-' is only a sign when an operand is expected
        if ch.isdigit() or (ch == "." and i + 1 < length and raw[i + 1].isdigit()) or (
            ch == "-" and _expects_operand(tokens)
        ):
            match = _NUMBER_RE.match(raw, i)
            if not match:
                raise GuardEvaluationError(f"Invalid number at position {i}", raw=raw, position=i)
            text = match.group(0)
            number = float(text) if any(c in text for c in ".eE") else int(text)
            tokens.append(Token("NUMBER", text, i, number))
            i = match.end()
            continue

        match = _IDENT_RE.match(raw, i)
        if match:
            tokens.append(Token("IDENT", match.group(0), i))
            i = match.end()
            continue

        if ch == "(":
            tokens.append(Token("LPAREN", ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token("RPAREN", ch, i))
            i += 1
            continue
        if ch == ".":
            tokens.append(Token("DOT", ch, i))
            i += 1
            continue

        for symbol in _SYMBOLS:
            if raw.startswith(symbol, i):
                tokens.append(Token("OP", symbol, i))
                i += len(symbol)
                break
        else:
            if raw.startswith("==", i) or raw.startswith("!=", i) or ch == "=":
                raise GuardEvaluationError(
                    f"Unsupported operator at position {i}; use === or !==",
                    raw=raw,
                    position=i
                )
            raise GuardEvaluationError(f"Unexpected character {ch!r} at position {i}", raw=raw, position=i)

    tokens.append(Token("EOF", "", length))
    return tokens


def _expects_operand(tokens: List[Token]) -> bool:
    if not tokens:
        return True
    last = tokens[-1]
    return last.kind in ("OP", "LPAREN")


def _read_string(raw: str, start: int) -> Tuple[str, int]:
    quote = raw[start]
    chars: List[str] = []
    i = start + 1
    while i < len(raw):
        ch = raw[i]
        if ch == "\\":
            if i + 1 >= len(raw):
                break
            escaped = raw[i + 1]
            chars.append(_ESCAPES.get(escaped, escaped))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise GuardEvaluationError(f"Unterminated string starting at position {start}", raw=raw, position=start)


# ============================================================================
# Parser
# ============================================================================

class _Parser:
    """Recursive-descent parser over the token list"""

    def __init__(self, raw: str):
        self.raw = raw
        self.tokens = tokenize(raw)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _error(self, message: str, token: Optional[Token] = None) -> GuardEvaluationError:
        token = token or self.current
        return GuardEvaluationError(f"{message} at position {token.position}", raw=self.raw, position=token.position)

    def _match_op(self, *ops: str) -> Optional[Token]:
        if self.current.kind == "OP" and self.current.text in ops:
            return self._advance()
        return None

    def parse(self) -> Node:
        if self.current.kind == "EOF":
            raise self._error("Empty expression")
        node = self._parse_or()
        if self.current.kind != "EOF":
            raise self._error(f"Unexpected token {self.current.text!r}")
        return node

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._match_op("||"):
            node = LogicalOp("||", node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_unary()
        while self._match_op("&&"):
            node = LogicalOp("&&", node, self._parse_unary())
        return node

    def _parse_unary(self) -> Node:
        if self._match_op("!"):
            return UnaryNot(self._parse_unary())
        return self._parse_comparison()

    def _parse_comparison(self) -> Node:
        left = self._parse_primary()
        op = self._match_op(*COMPARISON_OPERATORS)
        if op is None:
            return left
        right = self._parse_primary()
        if self.current.kind == "OP" and self.current.text in COMPARISON_OPERATORS:
            raise self._error("Chained comparisons need parentheses")
        return BinaryOp(op.text, left, right)

    def _parse_primary(self) -> Node:
        token = self.current

        if token.kind == "LPAREN":
            self._advance()
            node = self._parse_or()
            if self.current.kind != "RPAREN":
                raise self._error("Expected ')'")
            self._advance()
            return node

        if token.kind in ("NUMBER", "STRING"):
            self._advance()
            return Literal(token.value)

        if token.kind == "IDENT":
            if token.text in KEYWORDS:
                self._advance()
                return Literal(KEYWORDS[token.text])
            return self._parse_path()

        if token.kind == "EOF":
            raise self._error("Unexpected end of expression")
        raise self._error(f"Unexpected token {token.text!r}")

    def _parse_path(self) -> PropertyAccess:
        parts = [self._advance().text]
        while self.current.kind == "DOT":
            self._advance()
            if self.current.kind != "IDENT":
                raise self._error("Expected property name after '.'")
            parts.append(self._advance().text)
        if self.current.kind == "LPAREN":
            raise self._error("Function calls are not allowed")
        return PropertyAccess(tuple(parts))


def parse_expression(raw: str) -> Node:
    """
    Parse guard text into an AST

    Raises:
        GuardEvaluationError: If the text is outside the grammar
    """
    if not isinstance(raw, str):
        raise GuardEvaluationError("Expression must be a string", raw=str(raw))
    return _Parser(raw).parse()
