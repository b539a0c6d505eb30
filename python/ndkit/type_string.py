"""
Type strings for ndkit.

Grammar:

    type      := dim '*' type | base
    dim       := INTEGER | 'var' | 'Fixed'
    base      := NAME
               | 'complex' '<' NAME '>'
               | 'bytes' '<' INTEGER [',' INTEGER] '>'
               | 'pointer' '<' type '>'
               | 'convert' '<' 'to' '=' type ',' 'from' '=' type '>'
               | '(' [type (',' type)*] ')'
               | '{' [NAME ':' type (',' NAME ':' type)*] '}'

str(tp) spells a type so that parse_type(str(tp)) == tp.

Example:
    parse_type("3 * var * {x: int32, name: string}")
"""

from __future__ import annotations
from typing import List, NamedTuple, Optional
import re

from ndkit.errors import TypeStringError
from ndkit.types import BUILTIN_TYPES, BaseType, KindType

_TOKEN = re.compile(r"\s*(?:(?P<int>\d+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<punct>[*<>(){},:=]))")

_BUILTIN_BY_NAME = {str(tp): tp for tp in BUILTIN_TYPES}


class _Token(NamedTuple):
    kind: str
    text: str
    position: int


def _tokenize(source: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    while pos < len(source):
        if source[pos:].strip() == "":
            break
        m = _TOKEN.match(source, pos)
        if m is None or m.end() == pos:
            raise TypeStringError(f"unexpected character {source[pos:].lstrip()[:1]!r}", source, pos)
        kind = m.lastgroup
        tokens.append(_Token(kind, m.group(kind), m.start(kind)))
        pos = m.end()
    tokens.append(_Token("end", "", len(source)))
    return tokens


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.i = 0

    @property
    def current(self) -> _Token:
        return self.tokens[self.i]

    def error(self, message: str, token: Optional[_Token] = None) -> TypeStringError:
        token = token or self.current
        return TypeStringError(f"{message} at position {token.position} in {self.source!r}",
                               self.source, token.position)

    def accept(self, text: str) -> bool:
        if self.current.text == text and self.current.kind != "end":
            self.i += 1
            return True
        return False

    def expect(self, text: str) -> None:
        if not self.accept(text):
            raise self.error(f"expected {text!r}")

    def expect_int(self) -> int:
        tok = self.current
        if tok.kind != "int":
            raise self.error("expected an integer")
        self.i += 1
        return int(tok.text)

    def expect_name(self) -> str:
        tok = self.current
        if tok.kind != "name":
            raise self.error("expected a name")
        self.i += 1
        return tok.text

    def parse(self) -> BaseType:
        tp = self.parse_type()
        if self.current.kind != "end":
            raise self.error("unexpected trailing input")
        return tp

    def parse_type(self) -> BaseType:
        from ndkit.dim_types import FixedDimKindType, FixedDimType, VarDimType
        tok = self.current
        nxt = self.tokens[self.i + 1] if self.i + 1 < len(self.tokens) else None
        if nxt is not None and nxt.text == "*" and (tok.kind == "int" or tok.text in ("var", "Fixed")):
            self.i += 2
            element = self.parse_type()
            if tok.kind == "int":
                return FixedDimType(int(tok.text), element)
            if tok.text == "var":
                return VarDimType(element)
            return FixedDimKindType(element)
        return self.parse_base()

    def parse_base(self) -> BaseType:
        tok = self.current
        if self.accept("("):
            fields = self.parse_list(")", self.parse_type)
            from ndkit.tuple_types import TupleType
            return TupleType(fields)
        if self.accept("{"):
            pairs = self.parse_list("}", self.parse_struct_field)
            from ndkit.tuple_types import StructType
            return StructType([n for n, _ in pairs], [t for _, t in pairs])
        name = self.expect_name()
        if name == "complex":
            self.expect("<")
            inner = self.expect_name()
            self.expect(">")
            full = f"complex<{inner}>"
            if full not in _BUILTIN_BY_NAME:
                raise self.error(f"unknown complex type {full!r}", tok)
            return _BUILTIN_BY_NAME[full]
        if name == "bytes":
            from ndkit.string_types import FixedBytesType, bytes_
            if not self.accept("<"):
                return bytes_
            size = self.expect_int()
            alignment = self.expect_int() if self.accept(",") else 1
            self.expect(">")
            return FixedBytesType(size, alignment)
        if name == "string":
            from ndkit.string_types import string
            return string
        if name == "pointer":
            from ndkit.pointer_type import PointerType
            self.expect("<")
            target = self.parse_type()
            self.expect(">")
            return PointerType(target)
        if name == "convert":
            from ndkit.expr_types import ConvertType
            self.expect("<")
            self.expect("to")
            self.expect("=")
            value = self.parse_type()
            self.expect(",")
            self.expect("from")
            self.expect("=")
            operand = self.parse_type()
            self.expect(">")
            return ConvertType(value, operand)
        if name in _BUILTIN_BY_NAME:
            return _BUILTIN_BY_NAME[name]
        if KindType.is_kind_name(name):
            return KindType.from_name(name)
        raise self.error(f"unknown type name {name!r}", tok)

    def parse_struct_field(self):
        name = self.expect_name()
        self.expect(":")
        return name, self.parse_type()

    def parse_list(self, close: str, item):
        items = []
        if self.accept(close):
            return items
        items.append(item())
        while self.accept(","):
            items.append(item())
        self.expect(close)
        return items


def parse_type(source: str) -> BaseType:
    """Parse a type string.

    Raises:
        TypeStringError: If the string is not a valid type
    """
    return _Parser(source).parse()


def type_string(tp: BaseType) -> str:
    return str(tp)


__all__ = ["parse_type", "type_string"]
