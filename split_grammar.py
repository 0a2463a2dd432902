"""
Split Grammar Facade Compiler

Features:
- Compact rule notation for split and repeat productions
- Weighted and equal-weight child lists (weights synthesized at parse time)
- Grammars as data: built-in facade grammar or a JSON grammar file
- Catalog analysis (undefined symbols, shadowed rules, self-recursion)
- Leftmost-non-terminal derivation bounded by an iteration budget
- JSON, SVG and PNG output of the derived facade

Rule notation:
    rule        ::= HEAD '->' kind '(' axis ')' '{' children '}'
    kind        ::= 'split' | 'repeat'
    axis        ::= 'x' | 'y'
    children    ::= child ('|' child)*
    child       ::= NAME ['(' WEIGHT ')']

Example rules:
    "NT1 -> split(y) { Wall1(0.12) | NT2(0.48) | NT3(0.4) }"
    "NT2 -> repeat(y) { NT5(1.0) }"
    "NT8 -> split(x) { Window1 | Wall1 | Window1 }"

Grammar file (JSON):
    {
      "axiom": "NT1", "width": 200, "height": 200,
      "terminals": {"Wall1": {"name": "Wall1", "color": [128, 128, 128]}},
      "rules": ["NT1 -> split(y) { ... }"],
      "repetitions": {"NT2": 3}
    }
"""

from __future__ import annotations
import json
import math
import os
import sys
from dataclasses import dataclass, replace
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union
from xml.sax.saxutils import escape, quoteattr

import cairosvg


# Number of copies a REPEAT rule lays out unless the grammar overrides it.
DEFAULT_REPETITIONS = 2

DEFAULT_ITERATIONS = 1000


# =============================================================================
# 1. SOURCE LOCATION & ERROR HANDLING
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    rule: int
    column: int

    def __str__(self) -> str:
        return f"rule {self.rule}, col {self.column}"


class ErrorKind(Enum):
    SYNTAX = auto()
    SEMANTIC = auto()
    DERIVATION = auto()
    WARNING = auto()
    INFO = auto()


@dataclass
class Message:
    kind: ErrorKind
    text: str
    location: Optional[SourceLocation] = None
    hint: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.text} ({self.location})" if self.location else self.text
        return f"{text} - {self.hint}" if self.hint else text


class MessageCollector:
    def __init__(self, name: str = "<grammar>"):
        self.name = name
        self.errors: List[Message] = []
        self.warnings: List[Message] = []
        self.infos: List[Message] = []

    def error(self, text: str, loc: Optional[SourceLocation] = None,
              hint: str = None, kind: ErrorKind = ErrorKind.SEMANTIC):
        self.errors.append(Message(kind, text, loc, hint))

    def warn(self, text: str, loc: Optional[SourceLocation] = None):
        self.warnings.append(Message(ErrorKind.WARNING, text, loc))

    def info(self, text: str, loc: Optional[SourceLocation] = None):
        self.infos.append(Message(ErrorKind.INFO, text, loc))

    def has_errors(self) -> bool:
        return len(self.errors) > 0


class GrammarError(ValueError):
    pass


class MalformedRuleError(GrammarError):
    """A rule string is missing one of its required separators."""

    def __init__(self, message: str, rule_text: str = "", column: int = 1,
                 hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.rule_text = rule_text
        self.column = column
        self.hint = hint
        # Set by the catalog builder so the driver can point at the rule.
        self.rule_index: Optional[int] = None

    def __str__(self) -> str:
        text = f"{self.message} at col {self.column}: {self.rule_text.strip()!r}"
        return f"{text} ({self.hint})" if self.hint else text


class UnrecognizedKindError(MalformedRuleError):
    pass


class UnrecognizedAxisError(MalformedRuleError):
    pass


class UnknownSymbolError(GrammarError):
    def __init__(self, symbol: str, message: Optional[str] = None):
        super().__init__(message or f"Unknown symbol '{symbol}'")
        self.symbol = symbol


class GrammarDefinitionError(GrammarError):
    pass


# =============================================================================
# 2. DATA MODEL
# =============================================================================

class RuleKind(Enum):
    SPLIT = "split"
    REPEAT = "repeat"


class Axis(Enum):
    X = "x"
    Y = "y"


Color = Tuple[int, int, int]


@dataclass(frozen=True)
class Region:
    left: float
    bottom: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def top(self) -> float:
        return self.bottom + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def extent(self, axis: Axis) -> float:
        return self.width if axis is Axis.X else self.height

    def origin(self, axis: Axis) -> float:
        return self.left if axis is Axis.X else self.bottom

    def slice(self, axis: Axis, start: float, extent: float) -> Region:
        """Sub-region starting at `start` along `axis`, full extent across it."""
        if axis is Axis.X:
            return Region(start, self.bottom, extent, self.height)
        return Region(self.left, start, self.width, extent)

    def to_dict(self) -> Dict[str, float]:
        return {'left': self.left, 'bottom': self.bottom,
                'width': self.width, 'height': self.height}


@dataclass(frozen=True)
class Terminal:
    name: str
    color: Color

    @property
    def hex(self) -> str:
        return '#{:02x}{:02x}{:02x}'.format(*self.color)


@dataclass(frozen=True)
class Rule:
    head: str
    kind: RuleKind
    axis: Axis
    children: Tuple[Tuple[str, float], ...]
    repetitions: int = DEFAULT_REPETITIONS
    weighted: bool = True

    def child_symbols(self) -> List[str]:
        return [symbol for symbol, _ in self.children]

    def to_string(self) -> str:
        if self.weighted:
            parts = [f"{symbol}({weight:g})" for symbol, weight in self.children]
        else:
            parts = self.child_symbols()
        return f"{self.head} -> {self.kind.value}({self.axis.value}) {{ {' | '.join(parts)} }}"

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class Placement:
    symbol: str
    region: Region

    def to_dict(self) -> Dict[str, Any]:
        return {'symbol': self.symbol, 'region': self.region.to_dict()}


@dataclass(frozen=True)
class DerivationResult:
    placements: Tuple[Placement, ...]
    iterations: int
    remaining: Tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.remaining

    def symbols(self) -> List[str]:
        return [p.symbol for p in self.placements]

    def __len__(self) -> int:
        return len(self.placements)

    def __iter__(self) -> Iterator[Placement]:
        return iter(self.placements)


# =============================================================================
# 3. RULE PARSER
# =============================================================================

RULE_EXAMPLE = "A -> split(x) { B(0.3) | C(0.7) }"


def parse_rule(text: str, strict: bool = False,
               messages: Optional[MessageCollector] = None) -> Rule:
    """
    Parse one rule string into a Rule.

    Unrecognized kind and axis tokens fall back to REPEAT and Y. With
    `strict` they raise UnrecognizedKindError / UnrecognizedAxisError
    instead; otherwise the fallback is reported to `messages` if given.
    No check is made that children exist or that weights are non-negative.
    """
    arrow = text.find('->')
    if arrow < 0:
        raise MalformedRuleError("Missing '->' separator", text, 1, hint=f"Example: {RULE_EXAMPLE}")
    head = text[:arrow].strip()
    if not head:
        raise MalformedRuleError("Missing rule head before '->'", text, 1)

    brace = text.find('{', arrow + 2)
    if brace < 0:
        raise MalformedRuleError("Missing '{' before child list", text, len(text) + 1,
                                 hint=f"Example: {RULE_EXAMPLE}")

    kind, axis = _parse_header(text, arrow + 2, brace, head, strict, messages)
    children, weighted = _parse_children(text, brace + 1)
    return Rule(head, kind, axis, tuple(children), weighted=weighted)


def _parse_header(text: str, start: int, end: int, head: str, strict: bool,
                  messages: Optional[MessageCollector]) -> Tuple[RuleKind, Axis]:
    header = text[start:end]
    open_paren = header.find('(')
    if open_paren >= 0:
        kind_token = header[:open_paren].strip()
        close_paren = header.find(')', open_paren)
        axis_token = header[open_paren + 1:close_paren if close_paren >= 0 else len(header)].strip()
    else:
        kind_token, axis_token = header.strip(), ''

    if kind_token == RuleKind.SPLIT.value:
        kind = RuleKind.SPLIT
    elif kind_token == RuleKind.REPEAT.value:
        kind = RuleKind.REPEAT
    else:
        if strict:
            raise UnrecognizedKindError(f"Unrecognized rule kind '{kind_token}'", text, start + 1,
                                        hint="Expected 'split' or 'repeat'")
        kind = RuleKind.REPEAT
        if messages:
            messages.warn(f"Rule '{head}': unrecognized kind '{kind_token}' treated as repeat")

    if axis_token == Axis.X.value:
        axis = Axis.X
    elif axis_token == Axis.Y.value:
        axis = Axis.Y
    else:
        if strict:
            raise UnrecognizedAxisError(f"Unrecognized axis '{axis_token}'", text, start + 1,
                                        hint="Expected 'x' or 'y'")
        axis = Axis.Y
        if messages:
            messages.warn(f"Rule '{head}': unrecognized axis '{axis_token}' treated as y")

    return kind, axis


def _parse_children(text: str, start: int) -> Tuple[List[Tuple[str, float]], bool]:
    end = text.find('}', start)
    if end < 0:
        end = len(text)  # unterminated list runs to the end of the text
    body = text[start:end]
    if not body.strip():
        raise MalformedRuleError("Rule has no children", text, start + 1)

    names: List[str] = []
    weights: List[float] = []
    weighted: Optional[bool] = None
    offset = start
    for piece in body.split('|'):
        column = offset + 1
        offset += len(piece) + 1

        open_paren = piece.find('(')
        has_weight = open_paren >= 0
        name = (piece[:open_paren] if has_weight else piece).strip()
        if not name:
            raise MalformedRuleError("Empty child name", text, column)
        if weighted is None:
            weighted = has_weight
        elif weighted != has_weight:
            raise MalformedRuleError(f"Child '{name}' mixes weighted and unweighted children", text, column,
                                     hint="Give every child a weight or none at all")

        if has_weight:
            close_paren = piece.find(')', open_paren)
            if close_paren < 0:
                raise MalformedRuleError(f"Missing ')' after weight of child '{name}'", text,
                                         column + open_paren)
            raw = piece[open_paren + 1:close_paren].strip()
            try:
                weight = float(raw)
            except ValueError:
                raise MalformedRuleError(f"Invalid weight '{raw}' for child '{name}'", text,
                                         column + open_paren + 1) from None
            if not math.isfinite(weight):
                raise MalformedRuleError(f"Weight of child '{name}' must be finite, got '{raw}'", text,
                                         column + open_paren + 1)
            weights.append(weight)
            if piece[close_paren + 1:].strip():
                raise MalformedRuleError(f"Unexpected text after child '{name}'", text,
                                         column + close_paren + 1)
        names.append(name)

    if not weighted:
        weights = [1.0 / len(names)] * len(names)
    return list(zip(names, weights)), bool(weighted)


# =============================================================================
# 4. GRAMMAR CATALOG
# =============================================================================

DEFAULT_GRAMMAR: Dict[str, Any] = {
    'axiom': 'NT1',
    'width': 200,
    'height': 200,
    'terminals': {
        'Wall1': {'name': 'Wall1', 'color': [128, 128, 128]},
        'Wall2': {'name': 'Wall2', 'color': [192, 192, 192]},
        'Window1': {'name': 'Window', 'color': [0, 0, 255]},
        'Window2': {'name': 'Window', 'color': [0, 128, 128]},
    },
    'rules': [
        "NT1 -> split(y) { Wall1(0.12) | NT2(0.48) | NT3(0.12) | Wall1(0.12) | NT4(0.12) | Wall1(0.04) }",
        "NT2 -> repeat(y) { NT5(1.0) }",
        "NT3 -> split(x) { NT6(0.12) | Wall1(0.15) | Window1(0.1) | Wall2(0.16) | Window1(0.1) | NT7(0.37) }",
        "NT4 -> split(x) { NT6(0.12) | Wall2(0.1) | Wall1(0.05) | NT8(0.36) | Wall2(0.06) | Window2(0.1) | Wall1(0.06) | NT9(0.15) }",
        "NT5 -> split(y) { NT10(0.5) | Wall1(0.5) }",
        "NT6 -> split(x) { Wall1(0.3) | Window1(0.7) }",
        "NT7 -> split(x) { Wall1(0.18) | Window2(0.25) | Wall2(0.18) | NT9(0.39) }",
        "NT8 -> split(x) { Window1(0.27) | Wall1(0.46) | Window1(0.27) }",
        "NT9 -> split(x) { Window1(0.63) | Wall1(0.27) }",
        "NT10 -> split(x) { NT6(0.12) | Wall2(0.15) | NT8(0.36) | NT7(0.37) }",
    ],
}


def parse_color(value: Any, path: str = "color") -> Color:
    if isinstance(value, str):
        raw = value[1:] if value.startswith('#') else value
        if len(raw) == 6:
            try:
                return (int(raw[0:2], 16), int(raw[2:4], 16), int(raw[4:6], 16))
            except ValueError:
                pass
        raise GrammarDefinitionError(f"{path} must be '#rrggbb', got {value!r}")
    if isinstance(value, (list, tuple)) and len(value) == 3:
        if all(isinstance(c, int) and not isinstance(c, bool) and 0 <= c <= 255 for c in value):
            return (value[0], value[1], value[2])
    raise GrammarDefinitionError(f"{path} must be [r, g, b] with components 0-255, got {value!r}")


def _as_size(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise GrammarDefinitionError(f"{path} must be a non-negative number, got {value!r}")
    return float(value)


class GrammarCatalog:
    """
    Read-only rule and terminal tables for one grammar.

    A symbol is a terminal exactly when it is a key of the terminal table;
    a rule whose head is also a terminal is never expanded.
    """

    def __init__(self, rules: Mapping[str, Rule], terminals: Mapping[str, Terminal],
                 axiom: Optional[str] = None, width: float = 200.0, height: float = 200.0):
        self._rules = MappingProxyType(dict(rules))
        self._terminals = MappingProxyType(dict(terminals))
        self.axiom = axiom if axiom is not None else next(iter(self._rules), None)
        self.width = float(width)
        self.height = float(height)

    @property
    def rules(self) -> Mapping[str, Rule]:
        return self._rules

    @property
    def terminals(self) -> Mapping[str, Terminal]:
        return self._terminals

    def is_terminal(self, symbol: str) -> bool:
        return symbol in self._terminals

    def is_nonterminal(self, symbol: str) -> bool:
        return symbol in self._rules and symbol not in self._terminals

    def knows(self, symbol: str) -> bool:
        return symbol in self._terminals or symbol in self._rules

    def rule(self, symbol: str) -> Rule:
        try:
            return self._rules[symbol]
        except KeyError:
            raise UnknownSymbolError(symbol, f"No rule or terminal named '{symbol}'") from None

    def terminal(self, symbol: str) -> Terminal:
        try:
            return self._terminals[symbol]
        except KeyError:
            raise UnknownSymbolError(symbol, f"No terminal named '{symbol}'") from None

    def root_region(self) -> Region:
        return Region(0.0, 0.0, self.width, self.height)

    @classmethod
    def from_definition(cls, definition: Mapping[str, Any], strict: bool = False,
                        messages: Optional[MessageCollector] = None) -> GrammarCatalog:
        """Build a catalog from a grammar table such as DEFAULT_GRAMMAR."""
        if not isinstance(definition, Mapping):
            raise GrammarDefinitionError("Grammar definition must be an object")

        raw_terminals = definition.get('terminals')
        if not isinstance(raw_terminals, Mapping):
            raise GrammarDefinitionError("'terminals' must be an object of symbol -> {name, color}")
        terminals: Dict[str, Terminal] = {}
        for symbol, spec in raw_terminals.items():
            path = f"terminals.{symbol}"
            if isinstance(spec, Mapping):
                name = spec.get('name', symbol)
                if not isinstance(name, str):
                    raise GrammarDefinitionError(f"{path}.name must be a string")
                terminals[symbol] = Terminal(name, parse_color(spec.get('color'), f"{path}.color"))
            else:
                terminals[symbol] = Terminal(symbol, parse_color(spec, path))

        raw_rules = definition.get('rules')
        if not isinstance(raw_rules, (list, tuple)) or not all(isinstance(r, str) for r in raw_rules):
            raise GrammarDefinitionError("'rules' must be a list of rule strings")
        rules: Dict[str, Rule] = {}
        for i, text in enumerate(raw_rules):
            try:
                rule = parse_rule(text, strict=strict, messages=messages)
            except MalformedRuleError as err:
                err.rule_index = i
                raise
            if rule.head in rules and messages:
                messages.warn(f"Duplicate rule for '{rule.head}' (last definition wins)",
                              SourceLocation(i + 1, 1))
            rules[rule.head] = rule

        repetitions = definition.get('repetitions', {})
        if not isinstance(repetitions, Mapping):
            raise GrammarDefinitionError("'repetitions' must be an object of rule head -> count")
        for head, count in repetitions.items():
            if head not in rules:
                raise GrammarDefinitionError(f"repetitions.{head}: no rule named '{head}'")
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                raise GrammarDefinitionError(f"repetitions.{head} must be a positive integer, got {count!r}")
            if rules[head].kind is not RuleKind.REPEAT and messages:
                messages.warn(f"repetitions.{head} ignored: '{head}' is a split rule")
            rules[head] = replace(rules[head], repetitions=count)

        axiom = definition.get('axiom')
        if axiom is not None and not isinstance(axiom, str):
            raise GrammarDefinitionError("'axiom' must be a symbol name")
        width = _as_size(definition.get('width', 200), 'width')
        height = _as_size(definition.get('height', 200), 'height')
        return cls(rules, terminals, axiom, width, height)


def default_catalog(strict: bool = False) -> GrammarCatalog:
    return GrammarCatalog.from_definition(DEFAULT_GRAMMAR, strict=strict)


def parse_definition(text: str) -> Dict[str, Any]:
    try:
        definition = json.loads(text)
    except json.JSONDecodeError as err:
        raise GrammarDefinitionError(f"Invalid grammar JSON: {err.msg} (line {err.lineno}, col {err.colno})") from err
    if not isinstance(definition, dict):
        raise GrammarDefinitionError("Grammar definition must be an object")
    return definition


def load_grammar(path: str, strict: bool = False,
                 messages: Optional[MessageCollector] = None) -> GrammarCatalog:
    try:
        with open(path, encoding='utf-8') as f:
            text = f.read()
    except OSError as err:
        raise GrammarDefinitionError(f"Cannot read grammar file {path}: {err.strerror}") from err
    return GrammarCatalog.from_definition(parse_definition(text), strict=strict, messages=messages)


# =============================================================================
# 5. CATALOG ANALYSIS
# =============================================================================

class CatalogAnalyzer:
    def __init__(self, catalog: GrammarCatalog, messages: MessageCollector):
        self.catalog = catalog
        self.messages = messages
        self.recursive: List[str] = []
        self.unreachable: List[str] = []

    def analyze(self) -> Dict[str, Any]:
        self._check_axiom()
        self._check_children()
        self._check_shadowed()
        self._check_recursion()
        self._check_reachability()

        return {
            'is_valid': not self.messages.has_errors(),
            'recursive': self.recursive,
            'unreachable': self.unreachable,
            'errors': [str(e) for e in self.messages.errors],
            'warnings': [str(w) for w in self.messages.warnings]
        }

    def _check_axiom(self):
        axiom = self.catalog.axiom
        if axiom is None:
            self.messages.error("Grammar has no axiom and no rules")
        elif not self.catalog.knows(axiom):
            self.messages.error(f"Axiom '{axiom}' is not defined", hint="Add a rule or terminal for it")

    def _check_children(self):
        for head, rule in self.catalog.rules.items():
            for symbol in rule.child_symbols():
                if not self.catalog.knows(symbol):
                    self.messages.error(f"Rule '{head}' references undefined symbol '{symbol}'")

    def _check_shadowed(self):
        for head in self.catalog.rules:
            if self.catalog.is_terminal(head):
                self.messages.warn(f"Rule '{head}' is never expanded: '{head}' is a terminal")

    def _successors(self, symbol: str) -> List[str]:
        if not self.catalog.is_nonterminal(symbol):
            return []
        return self.catalog.rules[symbol].child_symbols()

    def _reachable(self, start: Iterable[str]) -> set:
        seen = set()
        stack = list(start)
        while stack:
            symbol = stack.pop()
            if symbol in seen:
                continue
            seen.add(symbol)
            stack.extend(self._successors(symbol))
        return seen

    def _check_recursion(self):
        for head in self.catalog.rules:
            if not self.catalog.is_nonterminal(head):
                continue
            if head in self._reachable(self._successors(head)):
                self.recursive.append(head)
                self.messages.warn(f"Rule '{head}' is recursive; derivation is bounded only by the iteration budget")

    def _check_reachability(self):
        if self.catalog.axiom is None:
            return
        reached = self._reachable([self.catalog.axiom])
        for head in self.catalog.rules:
            if head not in reached and self.catalog.is_nonterminal(head):
                self.unreachable.append(head)
                self.messages.info(f"Rule '{head}' is unreachable from axiom '{self.catalog.axiom}'")


# =============================================================================
# 6. DERIVATION ENGINE
# =============================================================================

def _partition(children: Sequence[Tuple[str, float]], axis: Axis, region: Region,
               start: float, total: float) -> List[Placement]:
    placements = []
    offset = 0.0
    last = len(children) - 1
    for j, (symbol, weight) in enumerate(children):
        if not math.isfinite(weight) or weight < 0:
            raise GrammarError(f"Child '{symbol}' has invalid weight {weight:g}")
        # The last child takes the remainder so siblings tile the extent exactly.
        extent = max(total - offset, 0.0) if j == last else total * weight
        placements.append(Placement(symbol, region.slice(axis, start + offset, extent)))
        offset += extent
    return placements


def allocate_children(rule: Rule, region: Region) -> List[Placement]:
    """Child placements for one expansion of `rule` over `region`, in rule order."""
    axis = rule.axis
    total = region.extent(axis)
    origin = region.origin(axis)
    if rule.kind is RuleKind.SPLIT:
        return _partition(rule.children, axis, region, origin, total)

    if rule.repetitions < 1:
        raise GrammarError(f"Rule '{rule.head}' has repetition count {rule.repetitions}")
    step = total / rule.repetitions
    placements = []
    for r in range(rule.repetitions):
        placements.extend(_partition(rule.children, axis, region, origin + r * step, step))
    return placements


def _check_budget(max_iterations: Any):
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, int) or max_iterations < 0:
        raise ValueError(f"max_iterations must be a non-negative integer, got {max_iterations!r}")


def _first_nonterminal(catalog: GrammarCatalog, model: Sequence[Placement]) -> Optional[int]:
    for i, item in enumerate(model):
        if not catalog.is_terminal(item.symbol):
            return i
    return None


def derive_items(catalog: GrammarCatalog, items: Iterable[Placement],
                 max_iterations: int) -> DerivationResult:
    """
    Rewrite the leftmost non-terminal of `items` until none remain or
    `max_iterations` rewrites have been made.

    Each rewrite replaces the item in place by its rule's children and the
    next scan starts again from the left. Running out of budget is not an
    error: the partial sequence is returned with its non-terminals listed in
    `remaining`.
    """
    _check_budget(max_iterations)
    model = list(items)
    iterations = 0
    while iterations < max_iterations:
        index = _first_nonterminal(catalog, model)
        if index is None:
            break
        item = model[index]
        rule = catalog.rule(item.symbol)
        for symbol in rule.child_symbols():
            if not catalog.knows(symbol):
                raise UnknownSymbolError(symbol, f"Rule '{rule.head}' references undefined symbol '{symbol}'")
        model[index:index + 1] = allocate_children(rule, item.region)
        iterations += 1

    remaining = tuple(p.symbol for p in model if not catalog.is_terminal(p.symbol))
    return DerivationResult(tuple(model), iterations, remaining)


def derive(catalog: GrammarCatalog, axiom: str, root_region: Region,
           max_iterations: int) -> DerivationResult:
    return derive_items(catalog, [Placement(axiom, root_region)], max_iterations)


class SplitGrammar:
    """A catalog bound to its own axiom and root region."""

    def __init__(self, catalog: Optional[GrammarCatalog] = None):
        self.catalog = catalog if catalog is not None else default_catalog()

    @property
    def width(self) -> float:
        return self.catalog.width

    @property
    def height(self) -> float:
        return self.catalog.height

    def derive(self, max_iterations: int) -> DerivationResult:
        if self.catalog.axiom is None:
            raise GrammarDefinitionError("Grammar has no axiom")
        return derive(self.catalog, self.catalog.axiom, self.catalog.root_region(), max_iterations)


# =============================================================================
# 7. RENDERING
# =============================================================================

def _fmt(x: float, precision: int = 4) -> str:
    s = f"{round(x, precision):.{precision}f}".rstrip('0').rstrip('.')
    return "0" if s in ("", "-0") else s


class Renderer:
    BACKGROUND = '#000000'

    def __init__(self, result: DerivationResult, catalog: GrammarCatalog,
                 width: Optional[float] = None, height: Optional[float] = None,
                 messages: Optional[MessageCollector] = None):
        self.result = result
        self.catalog = catalog
        self.width = catalog.width if width is None else width
        self.height = catalog.height if height is None else height
        self.messages = messages or MessageCollector()
        self.skipped: List[str] = []

    def json(self, analysis: Optional[Dict[str, Any]] = None) -> str:
        output = {
            'meta': {'width': self.width, 'height': self.height,
                     'axiom': self.catalog.axiom,
                     'iterations': self.result.iterations,
                     'complete': self.result.complete},
            'placements': [p.to_dict() for p in self.result]
        }
        if analysis is not None:
            output['validation'] = {'is_valid': analysis['is_valid'],
                                    'errors': analysis['errors'],
                                    'warnings': analysis['warnings']}
        return json.dumps(output, indent=2)

    def svg(self) -> str:
        """
        One rect per terminal placement, in derivation order.

        Regions are bottom-origin; SVG is top-left origin, so each rect's y is
        flipped against the canvas height.
        """
        w, h = _fmt(self.width), _fmt(self.height)
        lines = [f'<?xml version="1.0" encoding="UTF-8"?>\n'
                 f'<svg width="{w}" height="{h}" viewBox="0 0 {w} {h}" xmlns="http://www.w3.org/2000/svg">',
                 f'<rect x="0" y="0" width="{w}" height="{h}" fill="{self.BACKGROUND}"/>']

        for p in self.result:
            if not self.catalog.is_terminal(p.symbol):
                if p.symbol not in self.skipped:
                    self.skipped.append(p.symbol)
                    self.messages.warn(f"Non-terminal '{p.symbol}' left unexpanded; not painted")
                continue
            terminal = self.catalog.terminal(p.symbol)
            r = p.region
            y = self.height - (r.bottom + r.height)
            lines.append(f'<rect x="{_fmt(r.left)}" y="{_fmt(y)}" width="{_fmt(r.width)}" '
                         f'height="{_fmt(r.height)}" fill="{terminal.hex}" class={quoteattr(p.symbol)}>'
                         f'<title>{escape(terminal.name)}</title></rect>')
        lines.append('</svg>')
        return '\n'.join(lines)

    def png(self, svg_content: str, path: str, scale: float = 2):
        cairosvg.svg2png(bytestring=svg_content.encode('utf-8'), write_to=path, scale=scale)


# =============================================================================
# 8. COMPILER DRIVER
# =============================================================================

def _failed(messages: MessageCollector) -> Dict[str, Any]:
    return {'is_valid': False,
            'errors': [str(e) for e in messages.errors],
            'warnings': [str(w) for w in messages.warnings]}


class SplitGrammarCompiler:
    def __init__(self, name: str = "<grammar>", strict: bool = False):
        self.name = name
        self.strict = strict
        self.catalog: Optional[GrammarCatalog] = None
        self.result: Optional[DerivationResult] = None
        self.messages: Optional[MessageCollector] = None

    def compile(self, source: Union[str, Mapping[str, Any], None] = None,
                max_iterations: int = DEFAULT_ITERATIONS, verbose: bool = True):
        """
        Parse, analyze, derive and render a grammar.

        `source` is JSON grammar text, an already-loaded grammar table, or
        None for the built-in facade. Returns (json, svg, analysis, renderer);
        the first, second and last are None when the grammar is invalid.
        """
        if verbose:
            print("=" * 60)
            print("SPLIT GRAMMAR FACADE COMPILER")
            print("=" * 60)

        self.messages = messages = MessageCollector(self.name)
        self._reported = (0, 0, 0)
        self.catalog = None
        self.result = None

        # Parse
        if verbose:
            print("\n[PHASE 1: RULE PARSING]")
        try:
            definition = DEFAULT_GRAMMAR if source is None else (
                parse_definition(source) if isinstance(source, str) else source)
            self.catalog = GrammarCatalog.from_definition(definition, strict=self.strict, messages=messages)
        except MalformedRuleError as err:
            loc = SourceLocation(err.rule_index + 1, err.column) if err.rule_index is not None else None
            messages.error(err.message, loc, hint=err.hint, kind=ErrorKind.SYNTAX)
        except GrammarDefinitionError as err:
            messages.error(str(err), kind=ErrorKind.SYNTAX)
        if verbose:
            if self.catalog:
                print(f"  ✓ {len(self.catalog.rules)} rules, {len(self.catalog.terminals)} terminals")
            self._report(messages)
        if messages.has_errors():
            return None, None, _failed(messages), None

        # Analyze
        if verbose:
            print("\n[PHASE 2: CATALOG ANALYSIS]")
        analysis = CatalogAnalyzer(self.catalog, messages).analyze()
        if verbose:
            print(f"  ✓ Axiom '{self.catalog.axiom}', facade "
                  f"{_fmt(self.catalog.width)}x{_fmt(self.catalog.height)}")
            print(f"  {'✓' if analysis['is_valid'] else '✗'} Validation {'PASSED' if analysis['is_valid'] else 'FAILED'}")
            self._report(messages)
        if not analysis['is_valid']:
            return None, None, analysis, None

        # Derive
        if verbose:
            print("\n[PHASE 3: DERIVATION]")
        try:
            self.result = SplitGrammar(self.catalog).derive(max_iterations)
        except (GrammarError, ValueError) as err:
            messages.error(str(err), kind=ErrorKind.DERIVATION)
            if verbose:
                self._report(messages)
            return None, None, _failed(messages), None
        if not self.result.complete:
            messages.warn(f"Iteration budget {max_iterations} exhausted with "
                          f"{len(self.result.remaining)} non-terminal(s) left")
        if verbose:
            print(f"  ✓ {self.result.iterations} rewrites, {len(self.result)} placements")
            print(f"  {'✓ Fully terminal' if self.result.complete else '✗ Partial derivation'}")

        # Render
        if verbose:
            print("\n[PHASE 4: RENDERING]")
        renderer = Renderer(self.result, self.catalog, messages=messages)
        svg_out = renderer.svg()
        analysis.update({
            'iterations': self.result.iterations,
            'placements': len(self.result),
            'symbols': self.result.symbols(),
            'complete': self.result.complete,
            'remaining': list(self.result.remaining),
            'result': self.result,
            'warnings': [str(w) for w in messages.warnings],
        })
        json_out = renderer.json(analysis)
        if verbose:
            print("  ✓ JSON & SVG generated")
            self._report(messages)

        return json_out, svg_out, analysis, renderer

    def _report(self, messages: MessageCollector):
        # Only what was collected since the previous phase.
        e, w, i = self._reported
        for m in messages.errors[e:]:
            print(f"    [ERROR] {m}")
        for m in messages.warnings[w:]:
            print(f"    [WARN] {m}")
        for m in messages.infos[i:]:
            print(f"    [INFO] {m.text}")
        self._reported = (len(messages.errors), len(messages.warnings), len(messages.infos))


# =============================================================================
# 9. TESTS & MAIN
# =============================================================================

def _grammar(rules, axiom='A', terminals=('T', 'T1', 'T2'), color='#808080',
             width=10, height=10, **extra) -> Dict[str, Any]:
    definition = {'axiom': axiom, 'width': width, 'height': height,
                  'terminals': {t: {'name': t, 'color': color} for t in terminals},
                  'rules': list(rules)}
    definition.update(extra)
    return definition


def run_tests():
    """Table-driven suite over whole grammars: (name, grammar, iterations, valid, expected)."""

    tests = [
        # =================================================================
        # CATEGORY 1: Split
        # =================================================================
        ("Split: Two weighted children",
         _grammar(["A -> split(x) { T1(0.25) | T2(0.75) }"]), 1, True,
         {'symbols': ['T1', 'T2'], 'complete': True, 'iterations': 1}),
        ("Split: Vertical axis",
         _grammar(["A -> split(y) { T1(0.5) | T2(0.5) }"]), 5, True,
         {'symbols': ['T1', 'T2'], 'iterations': 1}),
        ("Split: Nested rules",
         _grammar(["A -> split(x) { B(0.5) | T(0.5) }", "B -> split(y) { T1(0.5) | T2(0.5) }"]), 10, True,
         {'symbols': ['T1', 'T2', 'T'], 'iterations': 2}),
        ("Split: Leftmost first",
         _grammar(["A -> split(x) { B(0.5) | B(0.5) }", "B -> split(y) { T1(0.5) | T2(0.5) }"]), 2, True,
         {'symbols': ['T1', 'T2', 'B'], 'remaining': ['B'], 'complete': False}),
        ("Split: Whitespace insignificant",
         _grammar(["A->split(x){T1(0.5)|T2(0.5)}"]), 1, True, {'symbols': ['T1', 'T2']}),

        # =================================================================
        # CATEGORY 2: Repeat
        # =================================================================
        ("Repeat: Default count",
         _grammar(["B -> repeat(y) { T1(1.0) }"], axiom='B'), 2, True,
         {'symbols': ['T1', 'T1'], 'iterations': 1}),
        ("Repeat: Two children per copy",
         _grammar(["A -> repeat(x) { T1(0.5) | T2(0.5) }"]), 1, True,
         {'symbols': ['T1', 'T2', 'T1', 'T2']}),
        ("Repeat: Count override",
         _grammar(["A -> repeat(x) { T(1.0) }"], repetitions={'A': 3}), 1, True,
         {'symbols': ['T', 'T', 'T']}),
        ("Repeat: Bad count override",
         _grammar(["A -> repeat(x) { T(1.0) }"], repetitions={'A': 0}), 1, False, None),

        # =================================================================
        # CATEGORY 3: Dialects
        # =================================================================
        ("Dialect: Equal weights",
         _grammar(["A -> split(x) { T1 | T2 | T }"]), 1, True, {'symbols': ['T1', 'T2', 'T']}),
        ("Dialect: Unterminated list",
         _grammar(["A -> split(x) { T1 | T2"]), 1, True, {'symbols': ['T1', 'T2']}),
        ("Dialect: Mixed weights",
         _grammar(["A -> split(x) { T1(0.5) | T2 }"]), 1, False, None),

        # =================================================================
        # CATEGORY 4: Lenient kind/axis
        # =================================================================
        ("Lenient: Unknown kind is repeat",
         _grammar(["A -> tile(x) { T(1.0) }"]), 1, True, {'symbols': ['T', 'T']}),
        ("Lenient: Unknown axis is y",
         _grammar(["A -> split(z) { T1(0.5) | T2(0.5) }"]), 1, True, {'symbols': ['T1', 'T2']}),
        ("Lenient: Kind is case-sensitive",
         _grammar(["A -> Split(x) { T(1.0) }"]), 1, True, {'symbols': ['T', 'T']}),

        # =================================================================
        # CATEGORY 5: Malformed rules
        # =================================================================
        ("Malformed: Missing arrow", _grammar(["A split(x) { T(1.0) }"]), 1, False, None),
        ("Malformed: Missing brace", _grammar(["A -> split(x) T(1.0)"]), 1, False, None),
        ("Malformed: Missing paren", _grammar(["A -> split(x) { T(0.5 | T1(0.5) }"]), 1, False, None),
        ("Malformed: Bad weight", _grammar(["A -> split(x) { T(abc) }"]), 1, False, None),
        ("Malformed: Non-finite weight", _grammar(["A -> split(x) { T(nan) | T1(0.5) }"]), 1, False, None),
        ("Malformed: Empty child list", _grammar(["A -> split(x) { }"]), 1, False, None),
        ("Malformed: Trailing pipe", _grammar(["A -> split(x) { T(0.5) | }"]), 1, False, None),
        ("Malformed: Missing head", _grammar([" -> split(x) { T(1.0) }"]), 1, False, None),

        # =================================================================
        # CATEGORY 6: Catalog
        # =================================================================
        ("Catalog: Undefined child", _grammar(["A -> split(x) { T(0.5) | Q(0.5) }"]), 1, False, None),
        ("Catalog: Undefined axiom", _grammar(["A -> split(x) { T(1.0) }"], axiom='Z'), 1, False, None),
        ("Catalog: Bad color", _grammar(["A -> split(x) { T(1.0) }"], color='red'), 1, False, None),
        ("Catalog: RGB list color", _grammar(["A -> split(x) { T(1.0) }"], color=[10, 20, 30]), 1, True, None),
        ("Catalog: Negative width", _grammar(["A -> split(x) { T(1.0) }"], width=-1), 1, False, None),
        ("Catalog: Duplicate rule (last wins)",
         _grammar(["A -> split(x) { T1(1.0) }", "A -> split(x) { T2(1.0) }"]), 1, True, {'symbols': ['T2']}),
        ("Catalog: Rule shadowed by terminal",
         _grammar(["A -> split(x) { T(1.0) }", "T -> split(x) { T1(1.0) }"]), 5, True, {'symbols': ['T']}),

        # =================================================================
        # CATEGORY 7: Iteration budget
        # =================================================================
        ("Budget: Self recursion halts",
         _grammar(["A -> split(x) { A(0.5) | T(0.5) }"]), 3, True,
         {'symbols': ['A', 'T', 'T', 'T'], 'complete': False, 'remaining': ['A'], 'recursive': ['A']}),
        ("Budget: Zero iterations",
         _grammar(["A -> split(x) { T(1.0) }"]), 0, True, {'symbols': ['A'], 'complete': False}),
        ("Budget: Terminal axiom",
         _grammar(["A -> split(x) { T(1.0) }"], axiom='T'), 5, True,
         {'symbols': ['T'], 'iterations': 0, 'complete': True}),
        ("Budget: Negative iterations", _grammar(["A -> split(x) { T(1.0) }"]), -1, False, None),

        # =================================================================
        # CATEGORY 8: Built-in facade
        # =================================================================
        ("Default: Built-in facade", None, DEFAULT_ITERATIONS, True, {'complete': True, 'recursive': []}),
        ("Default: Budget of one", None, 1, True, {'iterations': 1, 'complete': False}),
    ]

    print("\n" + "=" * 70)
    print("TEST SUITE")
    print("=" * 70)

    categories: Dict[str, list] = {}
    for test in tests:
        categories.setdefault(test[0].split(":")[0], []).append(test)

    total_passed = total_failed = 0
    failed_tests = []

    for cat_name, cat_tests in categories.items():
        print(f"\n[{cat_name}]")
        cat_passed = cat_failed = 0

        for name, grammar, iterations, should_pass, expected in cat_tests:
            _, _, result, _ = SplitGrammarCompiler(f"<{name}>").compile(grammar, iterations, verbose=False)

            ok = result['is_valid'] == should_pass
            if ok and expected:
                for key, val in expected.items():
                    if result.get(key) != val:
                        ok = False
                        break

            if ok:
                print(f"  ✓ {name}")
                cat_passed += 1
            else:
                print(f"  ✗ {name}")
                print(f"      Expected: {'pass' if should_pass else 'fail'}, Got: {'pass' if result['is_valid'] else 'fail'}")
                if result['errors']:
                    print(f"      Errors: {result['errors'][:2]}")
                cat_failed += 1
                failed_tests.append(name)

        total_passed += cat_passed
        total_failed += cat_failed
        print(f"  [{cat_passed}/{cat_passed + cat_failed} passed]")

    print("\n" + "=" * 70)
    print(f"TOTAL: {total_passed}/{total_passed + total_failed} tests passed")
    if failed_tests:
        print("\nFailed tests:")
        for t in failed_tests:
            print(f"  - {t}")
    print("=" * 70)

    return total_passed, total_failed


def main(argv: Optional[List[str]] = None) -> int:
    import argparse
    p = argparse.ArgumentParser(description='Split Grammar Facade Compiler')
    p.add_argument('--test', action='store_true', help='run the built-in test suite')
    p.add_argument('--input', type=str, help='grammar JSON file (default: built-in facade)')
    p.add_argument('--iterations', type=int, default=DEFAULT_ITERATIONS)
    p.add_argument('--output-dir', type=str, default='.')
    p.add_argument('--name', type=str, default='facade', help='output file stem')
    p.add_argument('--scale', type=float, default=2)
    p.add_argument('--strict', action='store_true', help='reject unknown rule kinds and axes')
    p.add_argument('--quiet', action='store_true')
    args = p.parse_args(argv)

    if args.test:
        _, failed = run_tests()
        return 1 if failed else 0

    source = None
    name = "<built-in>"
    if args.input:
        name = args.input
        try:
            with open(args.input, encoding='utf-8') as f:
                source = f.read()
        except OSError as err:
            print(f"error: cannot read {args.input}: {err.strerror}", file=sys.stderr)
            return 1

    compiler = SplitGrammarCompiler(name, strict=args.strict)
    json_out, svg_out, analysis, renderer = compiler.compile(source, args.iterations, verbose=not args.quiet)

    if not json_out:
        for e in analysis['errors']:
            print(f"error: {e}", file=sys.stderr)
        return 1

    d = args.output_dir
    os.makedirs(d, exist_ok=True)
    stem = os.path.join(d, args.name)
    with open(f'{stem}.json', 'w', encoding='utf-8') as f:
        f.write(json_out)
    with open(f'{stem}.svg', 'w', encoding='utf-8') as f:
        f.write(svg_out)
    try:
        renderer.png(svg_out, f'{stem}.png', scale=args.scale)
    except (OSError, ValueError, SyntaxError) as err:
        # xml ParseError is a SyntaxError
        print(f"error: cannot rasterize {stem}.png: {err}", file=sys.stderr)
        return 1
    if not args.quiet:
        print(f"\n✓ Output saved to {d}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
