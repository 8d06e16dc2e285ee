"""
Top-down finite tree automata.

A top-down automaton starts with an initial state at the root and, at each
node, replaces the node's state with successor states on its children:

    q0(one) -> one(q1)      # in state q0, reading 'one', send q1 to the child
    q0(nill) -> nill        # a leaf consumes the pending state

The tree is accepted once every pending state has been consumed. Most
algorithms go through the equivalent bottom-up automaton.
"""

import logging
import random
from typing import Iterable, List, Optional

from .automaton import BaseAutomaton, BottomUpAutomaton, RUN_STRATEGIES, RulesType
from .dsl import load_rules_from_dsl, states_in_rules
from .rules import BottomUpRuleSet, Key, Rule, TopDownRuleSet
from .run import NondeterministicTopDownRun, TopDownRun
from .term import Signature, StateType, Term, format_state

logger = logging.getLogger(__name__)


class TopDownAutomaton(BaseAutomaton):
    """
    A top-down tree automaton: states, initial states and rules keyed by a
    state applied to a symbol, whose targets are tuples of successor states.

    Example:
        td = TopDownAutomaton.from_dsl(sig, '''
            q0(nill) -> nill
            q0(one) -> one(q1)
            q1(one) -> one(q0)
        ''', initial_states=["q0"])
        td.run(sig.parse("one(one(nill))")).run()   # => True
    """

    order = "pre"
    rule_set_class = TopDownRuleSet
    designated_label = "initial_states"

    def __init__(self, signature: Signature, states: Iterable[StateType],
                 initial_states: Iterable[StateType], rules: RulesType):
        super().__init__(signature, states, initial_states, rules)

    @classmethod
    def from_dsl(cls, signature: Signature, text: str,
                 initial_states: Iterable[StateType] = (),
                 states: Optional[Iterable[StateType]] = None) -> "TopDownAutomaton":
        rules = load_rules_from_dsl(text, signature, order=cls.order)
        initial_states = list(initial_states)
        if states is None:
            states = states_in_rules(rules, initial_states)
        return cls(signature, states, initial_states, rules)

    @property
    def initial_states(self) -> frozenset:
        return frozenset(self._designated)

    @property
    def initial_states_ordered(self) -> List[StateType]:
        """Initial states in insertion order."""
        return list(self._designated)

    def is_deterministic(self) -> bool:
        """No epsilon rules, one candidate per key and at most one initial state."""
        return super().is_deterministic() and len(self._designated) <= 1

    def remove_epsilon_rules_inplace(self) -> "TopDownAutomaton":
        if not self.has_epsilon_rules():
            return self
        logger.debug("Removing %d top-down epsilon rules", len(self._rules.epsilon_rules()))
        converted = self.to_bottom_up_automaton().remove_epsilon_rules_inplace()
        self._rules = converted.to_top_down_automaton()._rules
        return self

    def remove_epsilon_rules(self) -> "TopDownAutomaton":
        return self.copy().remove_epsilon_rules_inplace()

    def to_bottom_up_automaton(self):
        """
        Equivalent bottom-up automaton: q(f) -> f(q1, ..., qn) becomes
        f(q1, ..., qn) -> q; initial states become final states.
        """
        rules = BottomUpRuleSet()
        for key, rule in self._rules.each_rule():
            if key.is_epsilon:
                rules.insert(Key.epsilon(rule.target), Rule(key.state))
            else:
                rules.insert(Key.bottom_up(key.symbol, *rule.target), rule.with_target(key.state))
        return BottomUpAutomaton(self.signature, list(self._states), list(self._designated), rules)

    def to_grammar(self, axiom: Optional[str] = None):
        """
        Regular tree grammar with one non-terminal per state.

        Without an explicit axiom, a single initial state becomes the axiom;
        several initial states get a fresh '__axiom' non-terminal deriving
        each of them.
        """
        from .grammar import Production, RegularGrammar

        names = {state: format_state(state) for state in self._states}

        def name(state):
            return names.get(state) or format_state(state)

        productions = {}
        for key, rule in self._rules.each_rule():
            lhs = name(key.state)
            if key.is_epsilon:
                production = Production(Term(name(rule.target)))
            else:
                production = Production(
                    Term(key.symbol, *(Term(name(s)) for s in rule.target)), rule.capture)
            productions.setdefault(lhs, []).append(production)

        non_terminals = list(dict.fromkeys(list(names.values()) + list(productions)))
        initial = [name(s) for s in self._designated]
        if axiom is None:
            if not initial:
                raise ValueError("Cannot build a grammar without an axiom or initial state")
            if len(initial) == 1:
                axiom = initial[0]
            else:
                axiom, suffix = "__axiom", 0
                while axiom in non_terminals:
                    axiom = f"__axiom{suffix}"
                    suffix += 1
                non_terminals.append(axiom)
                productions[axiom] = [Production(Term(s)) for s in initial]

        return RegularGrammar(
            Term(axiom),
            Signature({nt: 0 for nt in non_terminals}),
            self.signature,
            productions,
        )

    def run(self, tree: Term, strategy: str = "auto",
            rng: Optional[random.Random] = None, trace: bool = False):
        """
        Start a run over a copy of tree.

        Strategies are the same as BottomUpAutomaton.run: "auto", "single"
        or "search". Epsilon rules are removed before running.
        """
        if strategy not in RUN_STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy}. "
                             f"Valid options: {', '.join(RUN_STRATEGIES)}")
        automaton = self.remove_epsilon_rules()
        if strategy == "auto":
            strategy = "single" if automaton.is_deterministic() else "search"
        if strategy == "single":
            return TopDownRun(automaton, tree, rng=rng, trace=trace)
        return NondeterministicTopDownRun(automaton, tree)

    def accepts(self, tree: Term) -> bool:
        return self.run(tree).run()
