"""Evaluator for custom key expressions.

Expressions reference the call's named parameters and may concatenate them
with literals:

    #order_id
    #order.customer.id
    #payload['sku'] + ':' + #items[0]
    'order:' + #order_id

Only parameter references, attribute/item access, string and integer
literals and ``+`` concatenation are supported. Operands are converted with
``str()`` (``None`` becomes an empty string) and joined.
"""

import re
from collections.abc import Mapping

from .exceptions import ConfigurationError

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^'\\]|\\.)*')
      | (?P<number>-?\d+)
      | (?P<ref>\#[A-Za-z_][A-Za-z0-9_]*)
      | (?P<attr>\.[A-Za-z_][A-Za-z0-9_]*)
      | (?P<lbracket>\[)
      | (?P<rbracket>\])
      | (?P<plus>\+)
    )
    """,
    re.VERBOSE,
)


def _tokenize(expression: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    text = expression.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ConfigurationError(
                f"Unexpected character at position {pos} in key expression {expression!r}"
            )
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _unquote(literal: str) -> str:
    return re.sub(r"\\(.)", r"\1", literal[1:-1])


class _Parser:
    def __init__(self, expression: str, params: Mapping[str, object]) -> None:
        self.expression = expression
        self.params = params
        self.tokens = _tokenize(expression)
        self.pos = 0

    def _error(self, message: str) -> ConfigurationError:
        return ConfigurationError(f"{message} in key expression {self.expression!r}")

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise self._error("Unexpected end")
        self.pos += 1
        return token

    def parse(self) -> str:
        if not self.tokens:
            raise self._error("Empty expression")

        parts = [self._operand()]
        while self._peek() is not None:
            kind, value = self._next()
            if kind != "plus":
                raise self._error(f"Unexpected {value!r}")
            parts.append(self._operand())

        return "".join("" if part is None else str(part) for part in parts)

    def _operand(self) -> object:
        kind, value = self._next()
        if kind == "string":
            return _unquote(value)
        if kind == "number":
            return int(value)
        if kind == "ref":
            return self._reference(value[1:])
        raise self._error(f"Unexpected {value!r}")

    def _reference(self, name: str) -> object:
        if name not in self.params:
            raise self._error(f"Unknown parameter '#{name}'")
        current = self.params[name]

        while (token := self._peek()) is not None and token[0] in ("attr", "lbracket"):
            kind, value = self._next()
            if kind == "attr":
                current = self._attribute(current, value[1:])
            else:
                index_kind, index = self._next()
                if index_kind == "string":
                    subscript: object = _unquote(index)
                elif index_kind == "number":
                    subscript = int(index)
                else:
                    raise self._error(f"Unexpected {index!r} inside []")
                if self._next()[0] != "rbracket":
                    raise self._error("Missing ']'")
                current = self._item(current, subscript)

        return current

    def _attribute(self, obj: object, name: str) -> object:
        if isinstance(obj, Mapping) and name in obj:
            return obj[name]
        try:
            return getattr(obj, name)
        except AttributeError:
            raise self._error(
                f"{type(obj).__name__} has no attribute '{name}'"
            ) from None

    def _item(self, obj: object, subscript: object) -> object:
        try:
            return obj[subscript]  # type: ignore[index]
        except (KeyError, IndexError, TypeError):
            raise self._error(f"Cannot index {type(obj).__name__} with {subscript!r}") from None


def evaluate(expression: str, params: Mapping[str, object]) -> str:
    """Evaluate a key expression against named parameters.

    Args:
        expression: Expression text
        params: Parameter name -> argument value

    Returns:
        The concatenated string result

    Raises:
        ConfigurationError: If the expression is malformed or references
            something that does not exist
    """
    return _Parser(expression, params).parse()
