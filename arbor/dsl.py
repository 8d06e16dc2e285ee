"""
Rule text format.

One rule per line, '#' starts a comment:

    # bottom-up rules (symbol over child states -> state)
    zero -> qnat
    s(qnat) -> qnat
    cons(qnat, qlist) -> qnelist {0: first_nat}
    qnelist -> qlist                      # epsilon rule

    # top-down rules (state applied to a symbol -> successor states)
    qnat(zero) -> zero
    qnelist(cons) -> cons(qnat, qlist) {0: first_nat}
    qnelist -> qlist                      # epsilon rule

For bottom-up rules a bare left-hand side is an epsilon key when it is not
a symbol of the signature. The optional '{position: name, ...}' suffix is
the capture map; positions are child indices or dotted paths ("0.1").
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import UnknownSymbolError
from .rules import BottomUpRuleSet, Key, Rule, RuleSet, TopDownRuleSet
from .term import PositionType, Signature, StateType, Term, parse_term

_RULE_RE = re.compile(r"^(?P<lhs>.+?)\s*->\s*(?P<rhs>[^{]+?)\s*(?:\{(?P<capture>[^}]*)\})?$")

RULE_SET_CLASSES = {"post": BottomUpRuleSet, "pre": TopDownRuleSet}


def parse_capture(text: Optional[str]) -> Dict[PositionType, str]:
    """
    Parse a capture map body such as "0: first_nat, 1.0: inner".

    Raises:
        ValueError: If an entry is not 'position: name'
    """
    capture: Dict[PositionType, str] = {}
    if not text or not text.strip():
        return capture
    for entry in text.split(","):
        position, sep, name = entry.partition(":")
        position, name = position.strip(), name.strip()
        if not sep or not name:
            raise ValueError(f"Invalid capture entry: {entry.strip()!r}")
        try:
            capture[tuple(int(p) for p in position.split("."))] = name
        except ValueError:
            raise ValueError(f"Invalid capture position: {position!r}") from None
    return capture


def _leaf_names(term: Term, line: str) -> Tuple[StateType, ...]:
    for child in term.children:
        if child.children or child.is_variable:
            raise ValueError(f"Expected state names as arguments in rule: {line!r}")
    return tuple(child.symbol for child in term.children)


def _leaf(term: Term, line: str) -> StateType:
    if term.children or term.is_variable:
        raise ValueError(f"Expected a single state in rule: {line!r}")
    return term.symbol


def parse_rule_line(line: str, signature: Signature,
                    order: str = "post") -> Optional[Tuple[Key, Rule]]:
    """
    Parse a single rule line.

    Returns: (key, rule) or None for blank and comment lines

    Raises:
        ValueError: If the line is not a well-formed rule
        UnknownSymbolError: If a bottom-up key uses an undeclared symbol
    """
    line = line.split("#", 1)[0].strip()
    if not line:
        return None

    match_obj = _RULE_RE.match(line)
    if not match_obj:
        raise ValueError(f"Invalid rule line (expected 'lhs -> rhs'): {line!r}")
    lhs = parse_term(match_obj.group("lhs"))
    rhs = parse_term(match_obj.group("rhs"))
    capture = parse_capture(match_obj.group("capture"))

    if order == "post":
        if lhs.symbol in signature:
            key = Key.bottom_up(lhs.symbol, *_leaf_names(lhs, line))
        elif lhs.arity == 0:
            key = Key.epsilon(lhs.symbol)
        else:
            raise UnknownSymbolError(f"Unknown symbol '{lhs.symbol}' in rule: {line!r}")
        return key, Rule(_leaf(rhs, line), capture)

    if order == "pre":
        if lhs.arity == 0:
            return Key.epsilon(lhs.symbol), Rule(_leaf(rhs, line), capture)
        if lhs.arity != 1:
            raise ValueError(f"Top-down key must be 'state(symbol)': {line!r}")
        (symbol,) = _leaf_names(lhs, line)
        if rhs.symbol != symbol:
            raise ValueError(f"Right-hand side must rebuild '{symbol}': {line!r}")
        return Key.top_down(lhs.symbol, symbol), Rule(_leaf_names(rhs, line), capture)

    raise ValueError(f"Unknown traversal order: {order}. Valid options: post, pre")


def load_rules_from_dsl(text: str, signature: Signature, order: str = "post") -> RuleSet:
    """
    Load a rule set from rule text.

    Repeating a left-hand side adds another candidate for the same key.

    Example:
        rules = load_rules_from_dsl('''
            zero -> qnat
            s(qnat) -> qnat
        ''', sig)
    """
    if order not in RULE_SET_CLASSES:
        raise ValueError(f"Unknown traversal order: {order}. Valid options: post, pre")
    rules = RULE_SET_CLASSES[order]()
    for number, line in enumerate(text.split("\n"), 1):
        try:
            parsed = parse_rule_line(line, signature, order)
        except (ValueError, KeyError) as e:
            raise type(e)(f"Line {number}: {e}") from e
        if parsed is not None:
            rules.insert(*parsed)
    rules.check(signature)
    return rules


def states_in_rules(rules: RuleSet, extra: Iterable[StateType] = ()) -> List[StateType]:
    """Every state mentioned by the rules, in order of first appearance."""
    states: Dict[StateType, None] = {}
    for key, rule in rules.each_rule():
        mentioned = list(key.states)
        if key.state is not None:
            mentioned.append(key.state)
        if isinstance(rule.target, tuple):
            mentioned.extend(rule.target)
        else:
            mentioned.append(rule.target)
        states.update(dict.fromkeys(mentioned))
    states.update(dict.fromkeys(extra))
    return list(states)
