"""
Regular tree grammars.

A regular tree grammar has an axiom, non-terminals of arity 0, terminals
(a signature) and productions rewriting a non-terminal into a term:

    qnat -> [zero, s(qnat)]
    qlist -> empty
    qnelist -> cons(qnat, qlist) {0: first_nat}

A grammar is normalized when every production is either a terminal symbol
over non-terminal leaves, or a single non-terminal (a chain production).
Normalized grammars convert directly to automata.
"""

from typing import Dict, Iterable, List, Optional

from .automaton import BottomUpAutomaton
from .errors import ArityError, UnknownSymbolError
from .rules import (
    BottomUpRuleSet, CaptureMapType, Key, Rule, TopDownRuleSet,
    _format_position, _normalize_capture,
)
from .term import Signature, Term, format_term
from .top_down import TopDownAutomaton


class Production:
    """Right-hand side of a grammar rule: a term and an optional capture map."""

    __slots__ = ("term", "capture")

    def __init__(self, term: Term, capture: Optional[CaptureMapType] = None):
        self.term = term
        self.capture = _normalize_capture(capture)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Production):
            return NotImplemented
        return self.term == other.term and self.capture == other.capture

    __hash__ = None

    def __str__(self) -> str:
        text = format_term(self.term)
        if self.capture:
            text += " {" + ", ".join(f"{_format_position(p)}: {n}" for p, n in self.capture) + "}"
        return text

    def __repr__(self) -> str:
        return f"Production({self})"


class RegularGrammar:
    """
    A regular tree grammar.

    Example:
        g = automaton.to_grammar()
        g.axiom                      # => Term('qnelist')
        g.bottom_up_automaton()      # back to an automaton
    """

    def __init__(self, axiom: Term, non_terminals: Signature, terminals: Signature,
                 rules: Dict[str, Iterable[Production]]):
        if isinstance(axiom, str):
            axiom = Term(axiom)
        for symbol, arity in non_terminals:
            if arity != 0:
                raise ArityError(f"Non-terminal '{symbol}' must have arity 0, got {arity}")
            if symbol in terminals:
                raise ValueError(f"'{symbol}' is both a terminal and a non-terminal")
        if axiom.children or axiom.symbol not in non_terminals:
            raise UnknownSymbolError(f"Grammar's axiom must be a non-terminal: {axiom}")

        self.axiom = axiom
        self.non_terminals = non_terminals
        self.terminals = terminals
        self._rules: Dict[str, List[Production]] = {}
        for lhs, productions in rules.items():
            if lhs not in non_terminals:
                raise UnknownSymbolError(f"Unknown non-terminal '{lhs}' in grammar rules")
            for production in productions:
                self._check_production(production)
                candidates = self._rules.setdefault(lhs, [])
                if production not in candidates:
                    candidates.append(production)

    def _check_production(self, production: Production) -> None:
        for node in production.term.walk("pre"):
            if node.symbol in self.non_terminals:
                if node.children:
                    raise ArityError(f"Non-terminal '{node.symbol}' cannot have children")
            else:
                arity = self.terminals.arity(node.symbol)
                if node.arity != arity:
                    raise ArityError(f"Invalid child number for '{node.symbol}': "
                                     f"{node.arity}, expected {arity}")

    @property
    def rules(self) -> Dict[str, List[Production]]:
        return {lhs: list(p) for lhs, p in self._rules.items()}

    def _is_non_terminal(self, term: Term) -> bool:
        return not term.children and term.symbol in self.non_terminals

    def is_normalized(self) -> bool:
        """True if every production is f(nt1, ..., ntn) or a bare non-terminal."""
        for productions in self._rules.values():
            for production in productions:
                term = production.term
                if self._is_non_terminal(term):
                    continue
                if not all(self._is_non_terminal(c) for c in term.children):
                    return False
        return True

    def _require_normalized(self) -> None:
        if not self.is_normalized():
            raise ValueError("Grammar must be normalized to build an automaton")

    def bottom_up_automaton(self) -> BottomUpAutomaton:
        """Automaton with one state per non-terminal; the axiom is final."""
        self._require_normalized()
        rules = BottomUpRuleSet()
        for lhs, production in self._each_production():
            term = production.term
            if self._is_non_terminal(term):
                rules.insert(Key.epsilon(term.symbol), Rule(lhs))
            else:
                rules.insert(Key.bottom_up(term.symbol, *(c.symbol for c in term.children)),
                             Rule(lhs, production.capture))
        return BottomUpAutomaton(self.terminals, self.non_terminals.symbols(),
                                 [self.axiom.symbol], rules)

    def top_down_automaton(self) -> TopDownAutomaton:
        """Automaton with one state per non-terminal; the axiom is initial."""
        self._require_normalized()
        rules = TopDownRuleSet()
        for lhs, production in self._each_production():
            term = production.term
            if self._is_non_terminal(term):
                rules.insert(Key.epsilon(lhs), Rule(term.symbol))
            else:
                rules.insert(Key.top_down(lhs, term.symbol),
                             Rule(tuple(c.symbol for c in term.children), production.capture))
        return TopDownAutomaton(self.terminals, self.non_terminals.symbols(),
                                [self.axiom.symbol], rules)

    def _each_production(self):
        for lhs, productions in self._rules.items():
            for production in productions:
                yield lhs, production

    def rename_non_terminals(self, prefix: str = "nt") -> "RegularGrammar":
        """Grammar with non-terminals renamed prefix0, prefix1, ... in declaration order."""
        mapping = {nt: f"{prefix}{i}" for i, nt in enumerate(self.non_terminals.symbols())}

        def rename(term: Term) -> Term:
            if self._is_non_terminal(term):
                return Term(mapping[term.symbol])
            return Term(term.symbol, *(rename(c) for c in term.children))

        rules = {
            mapping[lhs]: [Production(rename(p.term), p.capture) for p in productions]
            for lhs, productions in self._rules.items()
        }
        return RegularGrammar(Term(mapping[self.axiom.symbol]),
                              Signature({nt: 0 for nt in mapping.values()}),
                              self.terminals, rules)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RegularGrammar):
            return NotImplemented
        return (self.axiom == other.axiom and self.non_terminals == other.non_terminals
                and self.terminals == other.terminals and self._rules == other._rules)

    __hash__ = None

    def __str__(self) -> str:
        lines = [
            "<RegularGrammar:",
            f"  axiom: {self.axiom}",
            f"  non_terminals: {self.non_terminals}",
            f"  terminals: {self.terminals}",
            "  rules:",
        ]
        for lhs, productions in self._rules.items():
            rendered = [str(p) for p in productions]
            rhs = rendered[0] if len(rendered) == 1 else "[" + ", ".join(rendered) + "]"
            lines.append(f"    {lhs} -> {rhs}")
        lines.append(">")
        return "\n".join(lines) + "\n"
