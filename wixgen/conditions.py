"""Parsing of installer guard conditions.

Guards use the Windows Installer conditional syntax, for example
``NOT Installed AND (REMOVE <> "ALL")`` or ``&MainFeature = 3``. Conditions are
only checked here; the installer engine evaluates them at install time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List
import re

from .errors import MalformedConditionError


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<string>"[^"]*")
  | (?P<integer>-?\d+)
  | (?P<operator>~?(?:<>|><|<<|>>|<=|>=|=|<|>))
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<symbol>[$?&!%]?[A-Za-z_][A-Za-z0-9_.]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"NOT", "AND", "OR", "XOR", "EQV", "IMP"}
# Lowest precedence first.
_BINARY_LEVELS = ("IMP", "EQV", "XOR", "OR", "AND")


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str
    text: str
    position: int


@dataclass(slots=True)
class Condition:
    """A parsed guard and the state it depends on."""

    text: str
    properties: set[str] = field(default_factory=set)
    components: set[str] = field(default_factory=set)
    features: set[str] = field(default_factory=set)
    environment: set[str] = field(default_factory=set)


def _tokenize(text: str) -> List[_Token]:
    tokens: List[_Token] = []
    position = 0
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if not match:
            raise MalformedConditionError(
                f"Unexpected character {text[position]!r} at position {position} in condition '{text}'",
                identifier=text,
            )
        kind = match.lastgroup or ""
        if kind != "space":
            value = match.group()
            if kind == "symbol" and value.upper() in _KEYWORDS:
                kind = "keyword"
                value = value.upper()
            tokens.append(_Token(kind, value, position))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0
        self.condition = Condition(text=text)

    def parse(self) -> Condition:
        if not self.tokens:
            raise MalformedConditionError("Condition is empty", identifier=self.text)
        self._expression(0)
        if self.index != len(self.tokens):
            token = self.tokens[self.index]
            self._fail(f"unexpected '{token.text}'", token)
        return self.condition

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _advance(self) -> _Token:
        token = self._peek()
        if token is None:
            raise MalformedConditionError(f"Condition '{self.text}' ends unexpectedly", identifier=self.text)
        self.index += 1
        return token

    def _fail(self, message: str, token: _Token) -> None:
        raise MalformedConditionError(
            f"Condition '{self.text}': {message} at position {token.position}", identifier=self.text
        )

    def _expression(self, level: int) -> None:
        if level == len(_BINARY_LEVELS):
            self._negation()
            return
        self._expression(level + 1)
        while True:
            token = self._peek()
            if token is None or token.kind != "keyword" or token.text != _BINARY_LEVELS[level]:
                return
            self._advance()
            self._expression(level + 1)

    def _negation(self) -> None:
        token = self._peek()
        if token is not None and token.kind == "keyword" and token.text == "NOT":
            self._advance()
            self._negation()
            return
        self._comparison()

    def _comparison(self) -> None:
        token = self._advance()
        if token.kind == "lparen":
            self._expression(0)
            closing = self._advance()
            if closing.kind != "rparen":
                self._fail("expected ')'", closing)
            return
        self._value(token)
        following = self._peek()
        if following is not None and following.kind == "operator":
            self._advance()
            self._value(self._advance())

    def _value(self, token: _Token) -> None:
        if token.kind in {"string", "integer"}:
            return
        if token.kind != "symbol":
            self._fail(f"expected a value, got '{token.text}'", token)
        prefix, name = token.text[0], token.text[1:]
        if prefix in "$?":
            self.condition.components.add(name)
        elif prefix in "&!":
            self.condition.features.add(name)
        elif prefix == "%":
            self.condition.environment.add(name)
        else:
            self.condition.properties.add(token.text)


def parse_condition(text: str) -> Condition:
    """Parse ``text`` and collect the properties, components and features it reads."""

    return _Parser(text).parse()


def unknown_references(
    condition: Condition,
    *,
    properties: Iterable[str],
    components: Iterable[str],
    features: Iterable[str],
) -> List[str]:
    """Return references in ``condition`` that name no known state variable.

    Component and feature references are returned with their ``$``/``&``
    prefix so the message shows what was written.
    """

    known_properties = set(properties)
    known_components = set(components)
    known_features = set(features)
    unknown = [name for name in sorted(condition.properties) if name not in known_properties]
    unknown.extend(f"${name}" for name in sorted(condition.components) if name not in known_components)
    unknown.extend(f"&{name}" for name in sorted(condition.features) if name not in known_features)
    return unknown


__all__ = ["Condition", "parse_condition", "unknown_references"]
