"""
Runs of tree automata over terms.

Two execution strategies are provided for each traversal order:

    single-choice   - walks the tree once, applying one candidate rule per
                      node (the first, or a random one when an rng is given);
                      stops early when no rule matches (the run is stuck)
    full search     - explores every candidate and declares success if any
                      assignment of states accepts the tree

A run always works on a private copy of the input tree, so the caller's
tree is never annotated or mutated.

Tracing:
    Single-choice runs accept trace=True and record a RunTrace of the rules
    they apply.
"""

import itertools
import logging
import random
from typing import Dict, Iterator, List, Optional, Set

from .rules import (
    Captures, Key, Rule, RuleSet, ChooserType, first_candidate, push_captures,
)
from .term import Term, StateType, SymbolType, PositionType, format_state

logger = logging.getLogger(__name__)


# ============================================================
# Run trace
# ============================================================

class RunStep:
    """A single rule application during a run."""

    def __init__(self, position: PositionType, key: Key, rule: Rule, rendered: str):
        self.position = position
        self.key = key
        self.rule = rule
        self.rendered = rendered

    def __repr__(self) -> str:
        return f"{self.position}: {self.key} -> {self.rendered}"

    def to_dict(self) -> Dict:
        """Convert step to dictionary for serialization."""
        return {
            "position": list(self.position),
            "key": str(self.key),
            "rule": self.rendered,
        }


class RunTrace:
    """
    A trace of the rules applied by a single-choice run.

    Provides multiple formatting options:
        - Default repr: verbose multi-line format
        - format("compact"): single line showing the rule chain
        - format("rules"): just the applied 'lhs -> rhs' transitions
    """

    def __init__(self):
        self.steps: List[RunStep] = []

    def add_step(self, step: RunStep):
        self.steps.append(step)

    def format(self, style: str = "verbose") -> str:
        """
        Format the trace in different styles.

        Args:
            style: One of "verbose", "compact", "rules"

        Returns:
            Formatted string representation of the trace.
        """
        if style == "compact":
            return "; ".join(f"{s.key} -> {s.rendered}" for s in self.steps)
        elif style == "rules":
            lines = [f"{s.key} -> {s.rendered}" for s in self.steps]
            return "\n".join(lines) if lines else "(no rules applied)"
        elif style == "verbose":
            return repr(self)
        raise ValueError(f"Unknown trace style: {style}. "
                         f"Valid options: verbose, compact, rules")

    def __repr__(self) -> str:
        lines = [f"Run trace ({len(self.steps)} steps):"]
        for i, step in enumerate(self.steps, 1):
            lines.append(f"  {i}. {step}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def __bool__(self) -> bool:
        return len(self.steps) > 0

    def to_dict(self) -> Dict:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "step_count": len(self.steps),
        }


# ============================================================
# Single-choice runs
# ============================================================

class Run:
    """
    Single-choice bottom-up run (post-order: leaves get a state first).

    Step through a run with ``step()`` or finish it with ``run()``:

        r = automaton.run(tree)
        r.step()            # annotate the first leaf
        str(r.tree)         # => "cons(qnat(zero), empty)"
        r.run()             # => True / False

    Once finished, the state annotations are removed from ``tree`` and the
    result is cached; ``matches`` holds the captured subtrees.
    """

    order = "post"

    def __init__(self, automaton, tree: Term, rng: Optional[random.Random] = None,
                 trace: bool = False):
        self._automaton = automaton
        self._rules: RuleSet = automaton.rules
        self.tree = tree.copy().clear_states()
        self._choose: ChooserType = rng.choice if rng is not None else first_candidate
        self._captures = Captures()
        self._trace: Optional[RunTrace] = RunTrace() if trace else None
        self._stuck = False
        self._done = False
        self._successful: Optional[bool] = None
        self._start()
        self._cursor: Iterator = self.tree.walk_positions(self.order)

    def _start(self) -> None:
        """Hook for runs that annotate the tree before the first step."""

    @property
    def finished(self) -> bool:
        return self._done

    @property
    def stuck(self) -> bool:
        """True if the run stopped because no rule matched a node."""
        return self._stuck

    @property
    def matches(self) -> Captures:
        return self._captures

    @property
    def trace(self) -> Optional[RunTrace]:
        return self._trace

    def step(self) -> bool:
        """
        Apply the rule for the next node.

        Returns True if a rule was applied, False once the run has finished
        or is stuck.
        """
        if self._done:
            return False
        try:
            position, node = next(self._cursor)
        except StopIteration:
            self._done = True
            return False
        key = self._rules.key_for(node)
        rule = self._rules.apply(node, self._captures, self._choose)
        if rule is None:
            logger.debug("Run stuck at position %s: no rule for %s", position, key)
            self._stuck = True
            self._done = True
            return False
        if self._trace is not None:
            self._trace.add_step(RunStep(position, key, rule, self._rules.format_rule(key, rule)))
        return True

    def run(self) -> bool:
        """Run to completion and return whether the tree was accepted."""
        while self.step():
            pass
        if self._successful is None:
            self._successful = not self._stuck and self._accepts()
            self.tree.clear_states()
        return self._successful

    def is_successful(self) -> bool:
        return self.run()

    def _accepts(self) -> bool:
        return self.tree.state in self._automaton.final_states

    def __repr__(self) -> str:
        status = "pending" if self._successful is None else (
            "accepted" if self._successful else "rejected")
        return f"<{self.__class__.__name__} {status}: {self.tree}>"


class TopDownRun(Run):
    """
    Single-choice top-down run (pre-order: the root gets a state first).

    The root is annotated with an initial state; each step replaces the
    state of the current node by states on its children. The run succeeds
    when every pending state has been consumed.
    """

    order = "pre"

    def _start(self) -> None:
        initial = list(self._automaton.initial_states_ordered)
        if not initial:
            logger.debug("Top-down run has no initial state")
            self._stuck = True
            self._done = True
            return
        self.tree.state = self._choose(initial)

    def _accepts(self) -> bool:
        return all(node.state is None for node in self.tree.walk("pre"))


# ============================================================
# Full-search runs
# ============================================================

class NondeterministicRun:
    """
    Full-search bottom-up run.

    Computes, for every subtree, the set of states it can be reduced to
    (children first, then every rule matching a combination of child states).
    The run succeeds if the root can reach a final state; ``matches`` holds
    the captures of one accepting derivation.
    """

    order = "post"

    def __init__(self, automaton, tree: Term):
        self._automaton = automaton
        self._rules: RuleSet = automaton.rules
        self.tree = tree.copy().clear_states()
        self._captures = Captures()
        self._reachable: Optional[Dict[StateType, Captures]] = None
        self._successful: Optional[bool] = None

    @property
    def finished(self) -> bool:
        return self._successful is not None

    @property
    def matches(self) -> Captures:
        return self._captures

    def reachable_states(self) -> List[StateType]:
        """States the whole tree can be reduced to, in discovery order."""
        self.run()
        return list(self._reachable)

    def run(self) -> bool:
        if self._successful is None:
            self._reachable = self._search(self.tree)
            self._successful = False
            for state, captures in self._reachable.items():
                if state in self._automaton.final_states:
                    self._successful = True
                    self._captures = captures
                    break
            if not self._successful:
                logger.debug("Search run rejected %s; reachable root states: %s",
                             self.tree, [format_state(s) for s in self._reachable])
        return self._successful

    def is_successful(self) -> bool:
        return self.run()

    def _search(self, root: Term) -> Dict[StateType, Captures]:
        """
        Map each state reachable at root to the captures of its first derivation.

        Nodes are visited in post-order; the table of a child is dropped once
        its parent has been computed.
        """
        tables: Dict[int, Dict[StateType, Captures]] = {}
        for node in root.walk("post"):
            children = [list(tables.pop(id(c)).items()) for c in node.children]
            reachable: Dict[StateType, Captures] = {}
            for combination in itertools.product(*children):
                key = Key(node.symbol, tuple(state for state, _ in combination))
                for rule in self._rules.lookup(key):
                    if rule.target in reachable:
                        continue
                    captures = Captures()
                    for _, child_captures in combination:
                        captures.extend(child_captures)
                    push_captures(node, rule, captures)
                    reachable[rule.target] = captures
            tables[id(node)] = reachable
        return tables[id(root)]

    def __repr__(self) -> str:
        status = "pending" if self._successful is None else (
            "accepted" if self._successful else "rejected")
        return f"<{self.__class__.__name__} {status}: {self.tree}>"


class NondeterministicTopDownRun(NondeterministicRun):
    """
    Full-search top-down run.

    First computes, leaves first, the states from which each subtree is
    accepted. The captures then follow the first accepting derivation: the
    first initial state that accepts the root and, at every node, the first
    candidate whose successor states all accept their children.
    """

    order = "pre"

    def __init__(self, automaton, tree: Term):
        super().__init__(automaton, tree)
        self._accepting: Optional[Dict[int, Set[StateType]]] = None

    def _accepting_states(self) -> Dict[int, Set[StateType]]:
        """For every node of the tree (by id), the states that accept it."""
        if self._accepting is not None:
            return self._accepting
        by_symbol: Dict[SymbolType, List] = {}
        for key, rule in self._rules.each_rule():
            if not key.is_epsilon:
                by_symbol.setdefault(key.symbol, []).append((key.state, rule.target))
        accepting: Dict[int, Set[StateType]] = {}
        for node in self.tree.walk("post"):
            accepting[id(node)] = {
                state for state, successors in by_symbol.get(node.symbol, ())
                if len(successors) == len(node.children)
                and all(s in accepting[id(c)] for s, c in zip(successors, node.children))
            }
        self._accepting = accepting
        return accepting

    def run(self) -> bool:
        if self._successful is None:
            self._successful = False
            for state in self._automaton.initial_states_ordered:
                captures = self._search_from(self.tree, state, Captures())
                if captures is not None:
                    self._successful = True
                    self._captures = captures
                    break
            if not self._successful:
                logger.debug("Search run rejected %s", self.tree)
        return self._successful

    def reachable_states(self) -> List[StateType]:
        """Initial states from which the tree is accepted."""
        accepting = self._accepting_states()[id(self.tree)]
        return [s for s in self._automaton.initial_states_ordered if s in accepting]

    def _search_from(self, root: Term, state: StateType,
                     captures: Captures) -> Optional[Captures]:
        """Captures after accepting root from state, or None if impossible."""
        accepting = self._accepting_states()
        if state not in accepting[id(root)]:
            return None
        captures = captures.copy()
        goals = [(root, state)]
        while goals:
            node, node_state = goals.pop()
            rule = next(
                r for r in self._rules.lookup(Key(node.symbol, (), node_state))
                if len(r.target) == len(node.children)
                and all(s in accepting[id(c)] for s, c in zip(r.target, node.children)))
            push_captures(node, rule, captures)
            goals.extend(reversed(list(zip(node.children, rule.target))))
        return captures
