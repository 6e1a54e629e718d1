"""Parser for ``${ ... }`` interpolations.

Grammar inside an interpolation, loosest binding first::

    expr     := or ("?" expr ":" expr)?
    or       := and ("||" and)*
    and      := equality ("&&" equality)*
    equality := compare (("==" | "!=") compare)*
    compare  := sum (("<" | "<=" | ">" | ">=") sum)*
    sum      := product (("+" | "-") product)*
    product  := unary (("*" | "/" | "%") unary)*
    unary    := ("-" | "!") unary | postfix
    postfix  := primary ("[" expr "]")*
    primary  := NUMBER | STRING | "true" | "false" | "[" items "]" | "(" expr ")"
              | IDENT "(" items ")" | "var" "." IDENT | "count" "." "index"
              | IDENT "." IDENT ("[" expr "]" | "." "*" | "." NUMBER)? "." IDENT
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, NoReturn

from topoform.errors import ExpressionSyntaxError
from topoform.lang.nodes import (
    Binary,
    Conditional,
    CountIndex,
    FunctionCall,
    Index,
    ListExpr,
    Literal,
    MapExpr,
    Node,
    ResourceRef,
    Template,
    Unary,
    VariableRef,
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>==|!=|<=|>=|&&|\|\||[-+*/%<>!?:()\[\],.])
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}


@dataclass(frozen=True, slots=True)
class Token:
    kind: str
    value: str
    pos: int


def _read_string(text: str, start: int) -> tuple[str, int]:
    """Read a double-quoted string starting at *start* (the opening quote)."""
    out: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if i + 1 >= len(text):
                break
            nxt = text[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == '"':
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    raise ExpressionSyntaxError("Unterminated string literal", source=text, position=start)


def tokenize(text: str, start: int = 0) -> tuple[list[Token], int]:
    """Tokenize an interpolation body starting at *start*.

    Stops at the closing ``}`` and returns the tokens plus the index just past it.
    """
    tokens: list[Token] = []
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "}":
            tokens.append(Token("eof", "", i))
            return tokens, i + 1
        if ch == '"':
            value, i_next = _read_string(text, i)
            tokens.append(Token("string", value, i))
            i = i_next
            continue
        m = _TOKEN_RE.match(text, i)
        if m is None:
            raise ExpressionSyntaxError(f"Unexpected character {ch!r}", source=text, position=i)
        kind = m.lastgroup
        if kind is None:
            raise ExpressionSyntaxError(f"Unexpected character {ch!r}", source=text, position=i)
        if kind != "ws":
            tokens.append(Token(kind, m.group(), i))
        i = m.end()
    raise ExpressionSyntaxError("Unterminated interpolation", source=text, position=start)


class _Parser:
    def __init__(self, tokens: list[Token], source: str) -> None:
        self._tokens = tokens
        self._source = source
        self._i = 0

    # ── token helpers ──

    def _peek(self, offset: int = 0) -> Token:
        return self._tokens[min(self._i + offset, len(self._tokens) - 1)]

    def _next(self) -> Token:
        tok = self._peek()
        self._i += 1
        return tok

    def _at(self, value: str, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok.kind == "op" and tok.value == value

    def _accept(self, value: str) -> bool:
        if self._at(value):
            self._i += 1
            return True
        return False

    def _expect(self, value: str) -> Token:
        tok = self._next()
        if tok.kind != "op" or tok.value != value:
            self._fail(f"Expected {value!r}, found {tok.value or 'end of expression'!r}", tok)
        return tok

    def _expect_ident(self) -> str:
        tok = self._next()
        if tok.kind != "ident":
            self._fail(f"Expected identifier, found {tok.value or 'end of expression'!r}", tok)
        return tok.value

    def _fail(self, message: str, tok: Token) -> NoReturn:
        raise ExpressionSyntaxError(message, source=self._source, position=tok.pos)

    # ── grammar ──

    def parse(self) -> Node:
        if self._peek().kind == "eof":
            self._fail("Empty interpolation", self._peek())
        node = self._expr()
        tok = self._peek()
        if tok.kind != "eof":
            self._fail(f"Unexpected token {tok.value!r}", tok)
        return node

    def _expr(self) -> Node:
        cond = self._binary(0)
        if self._accept("?"):
            if_true = self._expr()
            self._expect(":")
            if_false = self._expr()
            return Conditional(cond, if_true, if_false)
        return cond

    _LEVELS: tuple[tuple[str, ...], ...] = (
        ("||",),
        ("&&",),
        ("==", "!="),
        ("<", "<=", ">", ">="),
        ("+", "-"),
        ("*", "/", "%"),
    )

    def _binary(self, level: int) -> Node:
        if level == len(self._LEVELS):
            return self._unary()
        left = self._binary(level + 1)
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.value in self._LEVELS[level]:
                self._i += 1
                left = Binary(tok.value, left, self._binary(level + 1))
            else:
                return left

    def _unary(self) -> Node:
        if self._accept("-"):
            return Unary("-", self._unary())
        if self._accept("!"):
            return Unary("!", self._unary())
        return self._postfix()

    def _postfix(self) -> Node:
        node = self._primary()
        while self._accept("["):
            index = self._expr()
            self._expect("]")
            node = Index(node, index)
        return node

    def _items(self, closing: str) -> tuple[Node, ...]:
        items: list[Node] = []
        if self._accept(closing):
            return ()
        while True:
            items.append(self._expr())
            if self._accept(closing):
                return tuple(items)
            self._expect(",")
            if self._accept(closing):  # trailing comma
                return tuple(items)

    def _primary(self) -> Node:
        tok = self._next()
        if tok.kind == "number":
            return Literal(float(tok.value) if "." in tok.value else int(tok.value))
        if tok.kind == "string":
            return Literal(tok.value)
        if tok.kind == "op":
            if tok.value == "(":
                node = self._expr()
                self._expect(")")
                return node
            if tok.value == "[":
                return ListExpr(self._items("]"))
            self._fail(f"Unexpected token {tok.value!r}", tok)
        if tok.kind != "ident":
            self._fail("Unexpected end of expression", tok)

        name = tok.value
        if name in ("true", "false"):
            return Literal(name == "true")
        if self._accept("("):
            return FunctionCall(name, self._items(")"))
        if name == "var":
            self._expect(".")
            return VariableRef(self._expect_ident())
        if name == "count":
            self._expect(".")
            attr_tok = self._peek()
            if self._expect_ident() != "index":
                self._fail("Only count.index is supported", attr_tok)
            return CountIndex()
        if not self._at("."):
            self._fail(f"Unknown identifier {name!r}", tok)
        return self._resource_ref(name)

    def _resource_ref(self, resource_type: str) -> ResourceRef:
        self._expect(".")
        name = self._expect_ident()
        index: Node | None = None
        splat = False
        if self._accept("["):
            index = self._expr()
            self._expect("]")
        elif self._at(".") and self._at("*", 1):
            self._i += 2
            splat = True
        elif self._at(".") and self._peek(1).kind == "number" and "." not in self._peek(1).value:
            self._i += 1
            index = Literal(int(self._next().value))
        if not self._at("."):
            self._fail(
                f"Reference to {resource_type}.{name} needs an attribute", self._peek()
            )
        self._expect(".")
        attribute = self._expect_ident()
        return ResourceRef(resource_type, name, attribute, index=index, splat=splat)


def parse_expression(text: str) -> Node:
    """Parse a bare expression (no surrounding ``${}``)."""
    tokens, end = tokenize(text + "}", 0)
    if end != len(text) + 1:
        raise ExpressionSyntaxError("Unexpected '}'", source=text, position=end - 1)
    return _Parser(tokens, text).parse()


@lru_cache(maxsize=4096)
def parse_template(text: str) -> Node:
    """Parse a string that may embed ``${ ... }`` interpolations."""
    parts: list[Node] = []
    buf: list[str] = []
    i = 0
    while i < len(text):
        if text.startswith("$${", i):
            buf.append("${")
            i += 3
            continue
        if text.startswith("${", i):
            if buf:
                parts.append(Literal("".join(buf)))
                buf = []
            tokens, i = tokenize(text, i + 2)
            parts.append(_Parser(tokens, text).parse())
            continue
        buf.append(text[i])
        i += 1
    if buf or not parts:
        parts.append(Literal("".join(buf)))

    if len(parts) == 1:
        return parts[0]
    return Template(tuple(parts))


def parse_value(raw: Any) -> Node:
    """Parse a declared attribute value (scalar, list or map) into a tree."""
    if isinstance(raw, str):
        return parse_template(raw)
    if isinstance(raw, list):
        return ListExpr(tuple(parse_value(v) for v in raw))
    if isinstance(raw, dict):
        return MapExpr(tuple((str(k), parse_value(v)) for k, v in raw.items()))
    return Literal(raw)
