"""
Bottom-up finite tree automata.

ARBOR - Automata over Ranked Bottom-up and top-down ORdered trees

A bottom-up automaton assigns states to the nodes of a tree starting from
the leaves: the rule for a node depends on its symbol and on the states
already assigned to its children. The tree is accepted when the root ends
up in a final state.

    sig = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})
    automaton = BottomUpAutomaton.from_dsl(sig, '''
        zero -> qnat
        s(qnat) -> qnat
        empty -> qlist
        cons(qnat, qlist) -> qnelist
        qnelist -> qlist
    ''', final_states=["qnelist"])

    automaton.run(sig.parse("cons(zero, empty)")).run()   # => True

Every transformation comes in two flavours: ``reduce()`` returns a new
automaton and leaves the receiver untouched, ``reduce_inplace()`` rewrites
the receiver and returns it.
"""

import itertools
import logging
import random
from typing import Dict, Iterable, List, Optional, Union

from .dsl import load_rules_from_dsl, states_in_rules
from .errors import SignatureMismatchError
from .rules import BottomUpRuleSet, Key, Rule, RuleSet, TopDownRuleSet
from .run import NondeterministicRun, Run
from .term import Signature, StateType, Term, format_state

logger = logging.getLogger(__name__)

RUN_STRATEGIES = ("auto", "single", "search")

RulesType = Union[RuleSet, Dict[Key, Iterable[Rule]]]


def _common_capture(rules: Iterable[Rule]):
    """The capture shared by every rule, or None if they disagree."""
    captures = {rule.capture for rule in rules}
    return captures.pop() if len(captures) == 1 else None


def _merged_capture(left: Rule, right: Rule):
    """Capture entries of both rules; left wins on a shared position."""
    merged = right.capture_map
    merged.update(left.capture_map)
    return merged


# ============================================================
# BaseAutomaton
# ============================================================

class BaseAutomaton:
    """
    State set, rule set and designated states shared by both automaton kinds.

    Subclasses set ``order`` ("post" or "pre"), ``rule_set_class`` and the
    name of their designated state set (final or initial states).
    """

    order: str = ""
    rule_set_class = RuleSet
    designated_label = ""

    def __init__(self, signature: Signature, states: Iterable[StateType],
                 designated: Iterable[StateType], rules: RulesType):
        self.signature = signature
        self._states: Dict[StateType, None] = dict.fromkeys(states)
        self._designated: Dict[StateType, None] = dict.fromkeys(designated)
        self._rules = self._build_rules(rules)
        self._check_states()

    def _check_states(self) -> None:
        """Designated states and every state used by a rule must be declared."""
        for state in states_in_rules(self._rules, self._designated):
            if state not in self._states:
                raise ValueError(
                    f"Undeclared state {format_state(state)} in {self.__class__.__name__}; "
                    f"declared states: {{{', '.join(format_state(s) for s in self._states)}}}")

    def _build_rules(self, rules: RulesType) -> RuleSet:
        if isinstance(rules, RuleSet):
            built = self.rule_set_class()
            for key, rule in rules.each_rule():
                built.insert(key, rule)
        else:
            built = self.rule_set_class()
            for key, candidates in rules.items():
                candidates = list(candidates)
                if not candidates:
                    raise ValueError(f"Rule candidates for {key} must not be empty")
                for rule in candidates:
                    built.insert(key, rule)
        built.check(self.signature)
        return built

    # ------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------

    @property
    def states(self) -> frozenset:
        return frozenset(self._states)

    @property
    def ordered_states(self) -> List[StateType]:
        """States in insertion order."""
        return list(self._states)

    @property
    def rules(self) -> RuleSet:
        """A copy of the rule set."""
        return self._rules.copy()

    def size(self) -> int:
        """Number of states plus the total size of the rules."""
        return len(self._states) + self._rules.rules_size()

    def epsilon_rules(self) -> RuleSet:
        """Rules keyed by a bare state."""
        return self._rules.epsilon_rules()

    def non_epsilon_rules(self) -> RuleSet:
        return self._rules.non_epsilon_rules()

    def has_epsilon_rules(self) -> bool:
        return len(self._rules.epsilon_rules()) > 0

    def is_deterministic(self) -> bool:
        if self.has_epsilon_rules():
            return False
        return all(len(candidates) == 1 for _, candidates in self._rules.items())

    # ------------------------------------------------------------
    # Copying, comparison and renaming
    # ------------------------------------------------------------

    def copy(self):
        return self.__class__(self.signature, list(self._states),
                              list(self._designated), self._rules)

    def _assign(self, other: "BaseAutomaton") -> None:
        """Take over the states and rules of another automaton."""
        self._states = dict(other._states)
        self._designated = dict(other._designated)
        self._rules = other._rules.copy()

    def _check_signature(self, other: "BaseAutomaton", operation: str) -> None:
        if self.signature != other.signature:
            raise SignatureMismatchError(
                f"Cannot {operation} automata over different signatures: "
                f"{self.signature} != {other.signature}")

    def __eq__(self, other) -> bool:
        if not isinstance(other, BaseAutomaton):
            return NotImplemented
        if type(self) is not type(other):
            return False
        self._check_signature(other, "compare")
        return (self.states == other.states
                and frozenset(self._designated) == frozenset(other._designated)
                and self._rules == other._rules)

    __hash__ = None

    def rename_states_inplace(self, prefix: str = "qr",
                              mapping: Optional[Dict[StateType, StateType]] = None):
        """
        Rename states to prefix0, prefix1, ... in insertion order.

        Entries of mapping override the generated names. The renaming must
        stay bijective.
        """
        mapping = mapping or {}
        state_mapping = {
            state: mapping.get(state, f"{prefix}{i}")
            for i, state in enumerate(self._states)
        }
        if len(set(state_mapping.values())) != len(state_mapping):
            raise ValueError(f"State renaming is not bijective: {state_mapping}")
        self._states = dict.fromkeys(state_mapping[s] for s in self._states)
        self._designated = dict.fromkeys(state_mapping.get(s, s) for s in self._designated)
        self._rules = self._rules.rename_states(state_mapping)
        return self

    def rename_states(self, prefix: str = "qr",
                      mapping: Optional[Dict[StateType, StateType]] = None):
        return self.copy().rename_states_inplace(prefix, mapping)

    # ------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------

    def __str__(self) -> str:
        states = "{" + ", ".join(format_state(s) for s in self._states) + "}"
        designated = "{" + ", ".join(format_state(s) for s in self._designated) + "}"
        lines = [
            f"<{self.__class__.__name__}:",
            f"  signature: {self.signature}",
            f"  states: {states}",
            f"  {self.designated_label}: {designated}",
            f"  order: {self.order}",
            "  rules:",
        ]
        lines.extend(f"    {line}" for line in self._rules.rule_lines())
        lines.append(">")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}({len(self._states)} states, "
                f"{len(self._rules)} rule keys)")


# ============================================================
# BottomUpAutomaton
# ============================================================

class BottomUpAutomaton(BaseAutomaton):
    """
    A bottom-up tree automaton: states, final states and a rule set keyed
    by a symbol over child states (or by a bare state for epsilon rules).

    Example:
        a = BottomUpAutomaton(sig, ["qnat", "qlist"], ["qlist"], {
            Key.bottom_up("zero"): [Rule("qnat")],
            Key.bottom_up("empty"): [Rule("qlist")],
            Key.bottom_up("cons", "qnat", "qlist"): [Rule("qlist")],
        })
        a.run(sig.parse("cons(zero, empty)")).run()   # => True
    """

    order = "post"
    rule_set_class = BottomUpRuleSet
    designated_label = "final_states"

    def __init__(self, signature: Signature, states: Iterable[StateType],
                 final_states: Iterable[StateType], rules: RulesType):
        super().__init__(signature, states, final_states, rules)

    @classmethod
    def from_dsl(cls, signature: Signature, text: str,
                 final_states: Iterable[StateType] = (),
                 states: Optional[Iterable[StateType]] = None) -> "BottomUpAutomaton":
        rules = load_rules_from_dsl(text, signature, order=cls.order)
        final_states = list(final_states)
        if states is None:
            states = states_in_rules(rules, final_states)
        return cls(signature, states, final_states, rules)

    @property
    def final_states(self) -> frozenset:
        return frozenset(self._designated)

    # ------------------------------------------------------------
    # Epsilon rules
    # ------------------------------------------------------------

    def epsilon_closures(self) -> Dict[StateType, List[StateType]]:
        """
        For every state, the states reachable by following epsilon rules
        (the state itself first, then in discovery order).
        """
        epsilon = self._rules.epsilon_rules()
        mentioned = list(self._states)
        for key, rule in epsilon.each_rule():
            mentioned.extend((key.state, rule.target))
        closures = {state: [state] for state in mentioned}
        passes = 0
        while True:
            previous = {state: list(closure) for state, closure in closures.items()}
            for closure in closures.values():
                for member in list(closure):
                    for rule in epsilon.lookup(Key.epsilon(member)):
                        if rule.target not in closure:
                            closure.append(rule.target)
            passes += 1
            if closures == previous:
                break
        logger.debug("Epsilon closures converged after %d passes", passes)
        return closures

    def remove_epsilon_rules_inplace(self) -> "BottomUpAutomaton":
        """Replace epsilon rules by closure-expanded results. Idempotent."""
        if not self.has_epsilon_rules():
            return self
        closures = self.epsilon_closures()
        new_rules = BottomUpRuleSet()
        for key, rule in self._rules.non_epsilon_rules().each_rule():
            for state in closures.get(rule.target, [rule.target]):
                new_rules.insert(key, rule.with_target(state))
        self._rules = new_rules
        return self

    def remove_epsilon_rules(self) -> "BottomUpAutomaton":
        return self.copy().remove_epsilon_rules_inplace()

    # ------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------

    def _keys(self, states: List[StateType]) -> Iterable[Key]:
        """Every (symbol, state tuple) key over the given states."""
        for symbol, arity in self.signature:
            for combination in itertools.product(states, repeat=arity):
                yield Key(symbol, combination)

    def is_complete(self) -> bool:
        """True if every symbol over every state tuple has a rule."""
        return all(key in self._rules for key in self._keys(list(self._states)))

    def complete_inplace(self, dead_state: StateType = "__dead") -> "BottomUpAutomaton":
        """Add a dead state receiving every missing transition. Idempotent."""
        if self.is_complete():
            return self
        dead, suffix = dead_state, 0
        while dead in self._states:
            dead = f"{dead_state}{suffix}"
            suffix += 1
        self._states[dead] = None
        for key in list(self._keys(list(self._states))):
            if key not in self._rules:
                self._rules.insert(key, Rule(dead))
        return self

    def complete(self, dead_state: StateType = "__dead") -> "BottomUpAutomaton":
        return self.copy().complete_inplace(dead_state)

    # ------------------------------------------------------------
    # Reduction
    # ------------------------------------------------------------

    def reduce_inplace(self) -> "BottomUpAutomaton":
        """
        Keep only the states some tree can reach and the rules that reach them.

        Epsilon rules are removed first.
        """
        self.remove_epsilon_rules_inplace()
        marked: Dict[StateType, None] = {}
        available = self._rules.copy()
        marked_rules = BottomUpRuleSet()
        passes = 0
        while True:
            previous_states = dict(marked)
            previous_rules = marked_rules.copy()
            for symbol, arity in self.signature:
                for combination in itertools.product(list(marked), repeat=arity):
                    key = Key(symbol, combination)
                    candidates = available.remove(key)
                    if candidates:
                        for rule in candidates:
                            marked[rule.target] = None
                        marked_rules.replace(key, candidates)
            passes += 1
            logger.debug("reduce: pass %d marked %d states", passes, len(marked))
            if marked == previous_states and marked_rules == previous_rules:
                break
        self._rules = marked_rules
        self._states = marked
        self._designated = dict.fromkeys(s for s in self._designated if s in marked)
        return self

    def reduce(self) -> "BottomUpAutomaton":
        return self.copy().reduce_inplace()

    def is_reduced(self) -> bool:
        return self == self.reduce()

    # ------------------------------------------------------------
    # Determinization
    # ------------------------------------------------------------

    def determinize_inplace(self) -> "BottomUpAutomaton":
        """
        Subset construction over the reachable sets of states only.

        New states are frozensets of old states; a new state is final if it
        contains an old final state. A rule keeps its capture map when every
        contributing old rule carries the same one.
        """
        self.remove_epsilon_rules_inplace()
        if self.is_deterministic():
            return self
        new_states: Dict[frozenset, None] = {}
        new_rules = BottomUpRuleSet()
        passes = 0
        while True:
            previous_states = dict(new_states)
            previous_rules = new_rules.copy()
            for symbol, arity in self.signature:
                for combination in itertools.product(list(new_states), repeat=arity):
                    contributing = []
                    for choice in itertools.product(*combination):
                        contributing.extend(self._rules.lookup(Key(symbol, choice)))
                    if not contributing:
                        continue
                    new_state = frozenset(rule.target for rule in contributing)
                    new_states[new_state] = None
                    new_rules.replace(Key(symbol, combination),
                                      [Rule(new_state, _common_capture(contributing))])
            passes += 1
            logger.debug("determinize: pass %d found %d states", passes, len(new_states))
            if new_states == previous_states and new_rules == previous_rules:
                break
        final = self._designated
        self._designated = dict.fromkeys(s for s in new_states if any(f in s for f in final))
        self._states = new_states
        self._rules = new_rules
        return self

    def determinize(self) -> "BottomUpAutomaton":
        return self.copy().determinize_inplace()

    # ------------------------------------------------------------
    # Minimization
    # ------------------------------------------------------------

    def _distinguishable(self, s1: StateType, s2: StateType, states: List[StateType],
                         block_of: Dict[StateType, int]) -> bool:
        """True if some one-step context sends s1 and s2 to different blocks."""
        for symbol, arity in self.signature:
            if arity == 0:
                continue
            for rest in itertools.product(states, repeat=arity - 1):
                for position in range(arity):
                    q1 = self._rules.lookup(Key(symbol, rest[:position] + (s1,) + rest[position:]))[0]
                    q2 = self._rules.lookup(Key(symbol, rest[:position] + (s2,) + rest[position:]))[0]
                    if block_of[q1.target] != block_of[q2.target]:
                        return True
        return False

    def minimize_inplace(self) -> "BottomUpAutomaton":
        """
        Reduce, determinize and complete, then merge indistinguishable states.

        States of the result are frozensets of equivalent states.
        """
        self.reduce_inplace()
        self.determinize_inplace()
        self.complete_inplace()

        states = list(self._states)
        final = self._designated
        partition: List[List[StateType]] = [
            block for block in ([s for s in states if s in final],
                                [s for s in states if s not in final])
            if block
        ]
        passes = 0
        while True:
            previous = partition
            block_of = {s: i for i, block in enumerate(previous) for s in block}
            partition = []
            for block in previous:
                remaining = list(block)
                while remaining:
                    representative = remaining[0]
                    equivalent = [representative] + [
                        s for s in remaining[1:]
                        if not self._distinguishable(representative, s, states, block_of)
                    ]
                    partition.append(equivalent)
                    remaining = [s for s in remaining if s not in equivalent]
            passes += 1
            logger.debug("minimize: pass %d has %d classes", passes, len(partition))
            if {frozenset(b) for b in partition} == {frozenset(b) for b in previous}:
                break

        classes = [frozenset(block) for block in partition]
        representative = {cls: block[0] for cls, block in zip(classes, partition)}
        class_of = {s: cls for cls in classes for s in cls}
        new_rules = BottomUpRuleSet()
        for symbol, arity in self.signature:
            for combination in itertools.product(classes, repeat=arity):
                old = self._rules.lookup(
                    Key(symbol, tuple(representative[c] for c in combination)))[0]
                new_rules.insert(Key(symbol, combination), old.with_target(class_of[old.target]))
        self._states = dict.fromkeys(classes)
        self._designated = dict.fromkeys(c for c in classes if any(s in final for s in c))
        self._rules = new_rules
        return self

    def minimize(self) -> "BottomUpAutomaton":
        return self.copy().minimize_inplace()

    # ------------------------------------------------------------
    # Boolean operations
    # ------------------------------------------------------------

    def union_inplace(self, other: "BottomUpAutomaton") -> "BottomUpAutomaton":
        """
        Product construction accepting the trees accepted by either operand.

        Both operands are determinized, completed and renamed apart first;
        a product state is the frozenset of its two component states.
        A product rule carries the capture entries of both component rules,
        the receiver's entry winning on a shared position.
        """
        self._check_signature(other, "combine")
        a1 = self.determinize().complete_inplace().rename_states_inplace("qr1_")
        a2 = other.determinize().complete_inplace().rename_states_inplace("qr2_")
        pairs = list(itertools.product(a1.ordered_states, a2.ordered_states))
        new_rules = BottomUpRuleSet()
        for symbol, arity in self.signature:
            for combination in itertools.product(pairs, repeat=arity):
                r1 = a1._rules.lookup(Key(symbol, tuple(p[0] for p in combination)))[0]
                r2 = a2._rules.lookup(Key(symbol, tuple(p[1] for p in combination)))[0]
                new_rules.insert(
                    Key(symbol, tuple(frozenset(p) for p in combination)),
                    Rule(frozenset((r1.target, r2.target)), _merged_capture(r1, r2)))
        self._states = dict.fromkeys(frozenset(p) for p in pairs)
        self._designated = dict.fromkeys(
            frozenset(p) for p in pairs if p[0] in a1.final_states or p[1] in a2.final_states)
        self._rules = new_rules
        return self

    def union(self, other: "BottomUpAutomaton") -> "BottomUpAutomaton":
        return self.copy().union_inplace(other)

    def complement_inplace(self) -> "BottomUpAutomaton":
        """Determinize and complete if needed, then swap final and non-final states."""
        if not self.is_deterministic():
            self.determinize_inplace()
        if not self.is_complete():
            self.complete_inplace()
        final = self._designated
        self._designated = dict.fromkeys(s for s in self._states if s not in final)
        return self

    def complement(self) -> "BottomUpAutomaton":
        return self.copy().complement_inplace()

    def intersection_inplace(self, other: "BottomUpAutomaton") -> "BottomUpAutomaton":
        """De Morgan: complement(union(complement(self), complement(other)))."""
        self._check_signature(other, "combine")
        result = self.complement().union_inplace(other.complement()).complement_inplace()
        self._assign(result)
        return self

    def intersection(self, other: "BottomUpAutomaton") -> "BottomUpAutomaton":
        return self.copy().intersection_inplace(other)

    __or__ = union
    __ior__ = union_inplace
    __and__ = intersection
    __iand__ = intersection_inplace
    __invert__ = complement

    # ------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------

    def to_top_down_automaton(self):
        """
        Equivalent top-down automaton: each rule f(q1, ..., qn) -> q becomes
        q(f) -> f(q1, ..., qn); final states become initial states.
        """
        from .top_down import TopDownAutomaton

        rules = TopDownRuleSet()
        for key, rule in self._rules.each_rule():
            if key.is_epsilon:
                rules.insert(Key.epsilon(rule.target), Rule(key.state))
            else:
                rules.insert(Key.top_down(rule.target, key.symbol), rule.with_target(key.states))
        return TopDownAutomaton(self.signature, list(self._states), list(self._designated), rules)

    def to_grammar(self, axiom: Optional[str] = None):
        """Regular tree grammar generating the accepted language."""
        return self.to_top_down_automaton().to_grammar(axiom)

    # ------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------

    def run(self, tree: Term, strategy: str = "auto",
            rng: Optional[random.Random] = None, trace: bool = False):
        """
        Start a run over a copy of tree.

        Args:
            tree: Ground term to run on (never mutated)
            strategy: Execution strategy (default: "auto")
                - "auto": single-choice if deterministic, full search otherwise
                - "single": walk once, applying one candidate per node
                - "search": explore every candidate
            rng: Optional random.Random used by single-choice runs to pick
                among candidates (default: first candidate)
            trace: If True, single-choice runs record a RunTrace

        Returns:
            A Run or NondeterministicRun
        """
        if strategy not in RUN_STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy}. "
                             f"Valid options: {', '.join(RUN_STRATEGIES)}")
        automaton = self.remove_epsilon_rules()
        if strategy == "auto":
            strategy = "single" if automaton.is_deterministic() else "search"
        if strategy == "single":
            return Run(automaton, tree, rng=rng, trace=trace)
        return NondeterministicRun(automaton, tree)

    def accepts(self, tree: Term) -> bool:
        """Shorthand for run(tree).run()."""
        return self.run(tree).run()
