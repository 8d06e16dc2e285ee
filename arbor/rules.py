"""
Transition rules for tree automata.

A RuleSet maps a Key to a non-empty, ordered, duplicate-free list of Rule
candidates:

    bottom-up key     cons(qnat, qlist)   - symbol over child states
    top-down key      qnelist(cons)       - state applied to a symbol
    epsilon key       qnelist             - bare state, consumes no input

A Rule carries the result (a state, or the tuple of successor states of a
top-down rule) and an optional capture map from child position to a capture
name. Captured subtrees are accumulated in a Captures object while a run
applies rules.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import ArityError, CaptureError
from .term import (
    Term, Signature, StateType, SymbolType, PositionType, format_state,
)

CaptureMapType = Dict[Union[int, PositionType], str]
ChooserType = Callable[[List["Rule"]], "Rule"]


def first_candidate(candidates: List["Rule"]) -> "Rule":
    """Default rule chooser: the first candidate in insertion order."""
    return candidates[0]


# ============================================================
# Key
# ============================================================

class Key:
    """
    Left-hand side of a transition.

    Build keys with the named constructors:

        Key.bottom_up("cons", "qnat", "qlist")   # cons(qnat, qlist)
        Key.bottom_up("zero")                     # zero
        Key.top_down("qnelist", "cons")           # qnelist(cons)
        Key.epsilon("qnelist")                    # qnelist

    Keys are immutable and hashable.
    """

    __slots__ = ("symbol", "states", "state")

    def __init__(self, symbol: Optional[SymbolType], states: Tuple[StateType, ...] = (),
                 state: StateType = None):
        object.__setattr__(self, "symbol", symbol)
        object.__setattr__(self, "states", tuple(states))
        object.__setattr__(self, "state", state)

    def __setattr__(self, name, value):
        raise AttributeError("Key is immutable")

    @classmethod
    def bottom_up(cls, symbol: SymbolType, *states: StateType) -> "Key":
        return cls(symbol, states)

    @classmethod
    def top_down(cls, state: StateType, symbol: SymbolType) -> "Key":
        return cls(symbol, (), state)

    @classmethod
    def epsilon(cls, state: StateType) -> "Key":
        return cls(None, (), state)

    @property
    def is_epsilon(self) -> bool:
        return self.symbol is None

    @property
    def arity(self) -> int:
        return len(self.states)

    @property
    def size(self) -> int:
        return self.arity + 2

    def rename_states(self, mapping: Dict[StateType, StateType]) -> "Key":
        """Return a key with every state renamed through mapping."""
        return Key(
            self.symbol,
            tuple(mapping.get(s, s) for s in self.states),
            mapping.get(self.state, self.state) if self.state is not None else None,
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return (self.symbol == other.symbol and self.states == other.states
                and self.state == other.state)

    def __hash__(self) -> int:
        return hash((self.symbol, self.states, self.state))

    def __str__(self) -> str:
        if self.symbol is None:
            return format_state(self.state)
        if self.state is not None:
            return f"{format_state(self.state)}({self.symbol})"
        if self.states:
            return f"{self.symbol}(" + ", ".join(format_state(s) for s in self.states) + ")"
        return str(self.symbol)

    def __repr__(self) -> str:
        return f"Key({self})"


# ============================================================
# Rule
# ============================================================

def _normalize_capture(capture: Optional[CaptureMapType]) -> Optional[Tuple[Tuple[PositionType, str], ...]]:
    if not capture:
        return None
    items = capture.items() if isinstance(capture, dict) else capture
    normalized = {}
    for position, name in items:
        if isinstance(position, int):
            position = (position,)
        normalized[tuple(position)] = name
    return tuple(sorted(normalized.items()))


def _format_position(position: PositionType) -> str:
    return str(position[0]) if len(position) == 1 else str(position)


class Rule:
    """
    Right-hand side of a transition: a target and an optional capture map.

        Rule("qnelist")                               # bottom-up or epsilon
        Rule("qnelist", capture={0: "first_nat"})     # capture child 0
        Rule(("qnat", "qlist"))                       # top-down successors

    Rules are immutable, hashable and compare by value.
    """

    __slots__ = ("target", "capture")

    def __init__(self, target: Any, capture: Optional[CaptureMapType] = None):
        object.__setattr__(self, "target", target)
        object.__setattr__(self, "capture", _normalize_capture(capture))

    def __setattr__(self, name, value):
        raise AttributeError("Rule is immutable")

    @property
    def capture_map(self) -> Dict[PositionType, str]:
        """The capture map as a position -> name dict (empty if none)."""
        return dict(self.capture) if self.capture else {}

    def with_target(self, target: Any) -> "Rule":
        """Same capture, different target."""
        return Rule(target, self.capture)

    def format_capture(self) -> str:
        if not self.capture:
            return ""
        inner = ", ".join(f"{_format_position(p)}: {name}" for p, name in self.capture)
        return " {" + inner + "}"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Rule):
            return NotImplemented
        return self.target == other.target and self.capture == other.capture

    def __hash__(self) -> int:
        return hash((self.target, self.capture))

    def __str__(self) -> str:
        return format_state(self.target) + self.format_capture()

    def __repr__(self) -> str:
        if self.capture:
            return f"Rule({self.target!r}, capture={self.capture_map!r})"
        return f"Rule({self.target!r})"


# ============================================================
# Captures - dict-like accumulator of captured subtrees
# ============================================================

class Captures:
    """
    Named capture groups collected during a run.

    Each name maps to the subtrees captured under it, in match order:

        if run.run():
            print(run.matches["first_nat"])
            print(run.matches.get("other_nat", []))

    Captures compare equal to another Captures or to a plain dict of lists.
    """

    __slots__ = ('_dict',)

    def __init__(self, groups: Optional[Dict[str, Iterable[Term]]] = None):
        self._dict: Dict[str, List[Term]] = {}
        if groups:
            for name, terms in groups.items():
                self._dict[name] = list(terms)

    def push(self, name: str, term: Term) -> None:
        """Append a captured subtree under name."""
        self._dict.setdefault(name, []).append(term)

    def extend(self, other: "Captures") -> "Captures":
        """Append every group of other after the current ones. Returns self."""
        for name, terms in other.items():
            self._dict.setdefault(name, []).extend(terms)
        return self

    def copy(self) -> "Captures":
        return Captures(self._dict)

    def __getitem__(self, name: str) -> List[Term]:
        return self._dict[name]

    def get(self, name: str, default=None):
        return self._dict.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self._dict

    def keys(self):
        return self._dict.keys()

    def values(self):
        return self._dict.values()

    def items(self):
        return self._dict.items()

    def __iter__(self):
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def __eq__(self, other):
        if isinstance(other, Captures):
            return self._dict == other._dict
        if isinstance(other, dict):
            return self._dict == {k: list(v) for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        inner = ", ".join(f"{name}: [{', '.join(str(t) for t in terms)}]"
                          for name, terms in self._dict.items())
        return f"Captures({{{inner}}})"

    def to_dict(self) -> Dict[str, List[Term]]:
        """Convert to a plain dictionary."""
        return {name: list(terms) for name, terms in self._dict.items()}


def push_captures(node: Term, rule: Rule, captures: Captures) -> None:
    """
    Push the subtrees selected by a rule's capture map onto captures.

    The captured subtrees are copies with state annotations removed, taken
    before the rule rewrites the node.

    Raises:
        CaptureError: If a capture position does not exist on node
    """
    if not rule.capture:
        return
    for position, name in rule.capture:
        try:
            child = node[position]
        except IndexError:
            raise CaptureError(f"Invalid capture position: {position} for {node}") from None
        captures.push(name, child.copy().clear_states())


# ============================================================
# RuleSet
# ============================================================

class RuleSet:
    """
    Mapping from Key to an ordered, duplicate-free list of Rule candidates.

        rules = BottomUpRuleSet()
        rules.insert(Key.bottom_up("zero"), Rule("qnat"))
        rules.lookup(Key.bottom_up("zero"))    # => [Rule('qnat')]
        rules.lookup(Key.bottom_up("empty"))   # => []
    """

    def __init__(self, rules: Union["RuleSet", Dict[Key, Iterable[Rule]], None] = None):
        self._hash: Dict[Key, List[Rule]] = {}
        if rules is not None:
            items = rules.items() if hasattr(rules, "items") else rules
            for key, candidates in items:
                for rule in candidates:
                    self.insert(key, rule)

    # ------------------------------------------------------------
    # Core mapping operations
    # ------------------------------------------------------------

    def lookup(self, key: Key) -> List[Rule]:
        """Candidates for key; empty if there is no transition."""
        return list(self._hash.get(key, ()))

    def insert(self, key: Key, rule: Rule) -> "RuleSet":
        """Append a candidate for key, ignoring duplicates. Returns self."""
        if not isinstance(key, Key):
            raise TypeError(f"RuleSet keys must be Key instances, got {key!r}")
        if not isinstance(rule, Rule):
            raise TypeError(f"RuleSet values must be Rule instances, got {rule!r}")
        candidates = self._hash.setdefault(key, [])
        if rule not in candidates:
            candidates.append(rule)
        return self

    def replace(self, key: Key, rules: Iterable[Rule]) -> "RuleSet":
        """Set the candidates for key, dropping the previous ones."""
        rules = list(dict.fromkeys(rules))
        if not rules:
            raise ValueError(f"Rule candidates for {key} must not be empty")
        self._hash[key] = rules
        return self

    def remove(self, key: Key) -> List[Rule]:
        """Remove key; return its former candidates (empty if absent)."""
        return self._hash.pop(key, [])

    def items(self):
        return self._hash.items()

    def keys(self):
        return self._hash.keys()

    def __contains__(self, key: Key) -> bool:
        return key in self._hash

    def __iter__(self) -> Iterator[Tuple[Key, List[Rule]]]:
        """Iterate over (key, candidates) pairs in insertion order."""
        return iter([(k, list(v)) for k, v in self._hash.items()])

    def each_rule(self) -> Iterator[Tuple[Key, Rule]]:
        """Iterate over (key, rule) pairs, one per candidate."""
        for key, candidates in list(self._hash.items()):
            for rule in candidates:
                yield key, rule

    def __len__(self) -> int:
        """Number of keys."""
        return len(self._hash)

    def rules_size(self) -> int:
        """Sum over keys of key size times number of candidates."""
        return sum(k.size * len(v) for k, v in self._hash.items())

    def copy(self) -> "RuleSet":
        new_rule_set = self.__class__()
        new_rule_set._hash = {k: list(v) for k, v in self._hash.items()}
        return new_rule_set

    def select(self, predicate: Callable[[Key, List[Rule]], bool]) -> "RuleSet":
        """New rule set holding the entries for which predicate holds."""
        selected = self.__class__()
        selected._hash = {k: list(v) for k, v in self._hash.items() if predicate(k, v)}
        return selected

    def reject(self, predicate: Callable[[Key, List[Rule]], bool]) -> "RuleSet":
        """New rule set without the entries for which predicate holds."""
        return self.select(lambda k, v: not predicate(k, v))

    def epsilon_rules(self) -> "RuleSet":
        return self.select(lambda k, _: k.is_epsilon)

    def non_epsilon_rules(self) -> "RuleSet":
        return self.reject(lambda k, _: k.is_epsilon)

    def rename_states(self, mapping: Dict[StateType, StateType]) -> "RuleSet":
        """New rule set with keys and targets renamed through mapping."""
        renamed = self.__class__()
        for key, rule in self.each_rule():
            renamed.insert(key.rename_states(mapping), self._rename_rule(rule, mapping))
        return renamed

    def _rename_rule(self, rule: Rule, mapping: Dict[StateType, StateType]) -> Rule:
        return rule.with_target(mapping.get(rule.target, rule.target))

    def __eq__(self, other) -> bool:
        if not isinstance(other, RuleSet):
            return NotImplemented
        return type(self) is type(other) and self._hash == other._hash

    __hash__ = None

    # ------------------------------------------------------------
    # Checking and rendering
    # ------------------------------------------------------------

    def check(self, signature: Signature) -> None:
        """
        Check every entry against a signature.

        Raises:
            UnknownSymbolError: If a key uses a symbol outside the alphabet
            ArityError: If a key or rule disagrees with the symbol's arity
        """
        for key, rule in self.each_rule():
            self.check_entry(signature, key, rule)

    def check_entry(self, signature: Signature, key: Key, rule: Rule) -> None:
        raise NotImplementedError

    def format_rule(self, key: Key, rule: Rule) -> str:
        return str(rule)

    def rule_lines(self) -> List[str]:
        """One 'lhs -> rhs' line per key, in insertion order."""
        lines = []
        for key, candidates in self._hash.items():
            rendered = [self.format_rule(key, r) for r in candidates]
            rhs = rendered[0] if len(rendered) == 1 else "[" + ", ".join(rendered) + "]"
            lines.append(f"{key} -> {rhs}")
        return lines

    def __str__(self) -> str:
        return "\n".join(self.rule_lines())

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {', '.join(self.rule_lines())}>"

    # ------------------------------------------------------------
    # Rule application
    # ------------------------------------------------------------

    def key_for(self, node: Term) -> Key:
        """The key that matches a node during a run."""
        raise NotImplementedError

    def apply(self, node: Term, captures: Captures,
              choose: ChooserType = first_candidate) -> Optional[Rule]:
        """
        Apply one matching rule to node, in place.

        Returns the applied rule, or None if no rule matches (the run is stuck).
        """
        raise NotImplementedError


class BottomUpRuleSet(RuleSet):
    """Rules keyed by a symbol over the states of its children."""

    def check_entry(self, signature: Signature, key: Key, rule: Rule) -> None:
        if key.is_epsilon:
            return
        arity = signature.arity(key.symbol)
        if key.arity != arity:
            raise ArityError(f"Invalid rule {key} -> {rule}: '{key.symbol}' "
                             f"has arity {arity}, key has {key.arity} states")

    def key_for(self, node: Term) -> Key:
        return Key(node.symbol, tuple(c.state for c in node.children))

    def apply(self, node: Term, captures: Captures,
              choose: ChooserType = first_candidate) -> Optional[Rule]:
        candidates = self._hash.get(self.key_for(node))
        if not candidates:
            return None
        rule = choose(candidates)
        push_captures(node, rule, captures)
        for child in node.children:
            child.state = None
        node.state = rule.target
        return rule


class TopDownRuleSet(RuleSet):
    """Rules keyed by a state applied to a symbol; targets are successor tuples."""

    def check_entry(self, signature: Signature, key: Key, rule: Rule) -> None:
        if key.is_epsilon:
            return
        arity = signature.arity(key.symbol)
        if key.states:
            raise ArityError(f"Top-down key {key!r} must not constrain child states")
        if not isinstance(rule.target, tuple) or len(rule.target) != arity:
            raise ArityError(f"Invalid rule {key} -> {rule}: '{key.symbol}' "
                             f"has arity {arity}, rule gives "
                             f"{len(rule.target) if isinstance(rule.target, tuple) else 'no'} successor states")

    def _rename_rule(self, rule: Rule, mapping: Dict[StateType, StateType]) -> Rule:
        if isinstance(rule.target, tuple):
            return rule.with_target(tuple(mapping.get(s, s) for s in rule.target))
        return super()._rename_rule(rule, mapping)

    def format_rule(self, key: Key, rule: Rule) -> str:
        if key.is_epsilon:
            return str(rule)
        if rule.target:
            rhs = f"{key.symbol}(" + ", ".join(format_state(s) for s in rule.target) + ")"
        else:
            rhs = str(key.symbol)
        return rhs + rule.format_capture()

    def key_for(self, node: Term) -> Key:
        return Key(node.symbol, (), node.state)

    def apply(self, node: Term, captures: Captures,
              choose: ChooserType = first_candidate) -> Optional[Rule]:
        candidates = self._hash.get(self.key_for(node))
        if not candidates:
            return None
        rule = choose(candidates)
        push_captures(node, rule, captures)
        node.state = None
        for child, state in zip(node.children, rule.target):
            child.state = state
        return rule
