"""
ARBOR - Automata over Ranked Bottom-up and top-down ORdered trees

Finite tree automata over ranked terms: runs, boolean operations,
determinization, minimization and regular tree grammars.

Quick Start:
    from arbor import Signature, BottomUpAutomaton

    sig = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})
    nelist = BottomUpAutomaton.from_dsl(sig, '''
        zero -> qnat
        s(qnat) -> qnat
        empty -> qlist
        cons(qnat, qlist) -> qnelist {0: first_nat}
        qnelist -> qlist
    ''', final_states=["qnelist"])

    run = nelist.run(sig.parse("cons(zero, empty)"))
    run.run()            # => True
    run.matches          # => Captures({'first_nat': [zero]})

Rule Syntax:
    # Comments start with #
    f(q1, q2) -> q {0: name}   - bottom-up rule, optional capture of child 0
    q1 -> q2                   - epsilon rule
    q(f) -> f(q1, q2)          - top-down rule

Operations:
    a | b, a & b, ~a          - union, intersection, complement
    a.determinize()           - subset construction
    a.minimize()              - smallest equivalent deterministic automaton
    a.to_top_down_automaton() - conversions, also to_grammar()
"""

__version__ = "0.1.0"

# Errors
from .errors import (
    ArborError,
    ArityError,
    UnknownSymbolError,
    CaptureError,
    SignatureMismatchError,
)

# Terms
from .term import (
    Term,
    Signature,
    Substitution,
    SymbolType,
    StateType,
    PositionType,
    parse_term,
    format_term,
    format_state,
)

# Rules
from .rules import (
    Key,
    Rule,
    RuleSet,
    BottomUpRuleSet,
    TopDownRuleSet,
    Captures,
)

# Runs
from .run import (
    Run,
    TopDownRun,
    NondeterministicRun,
    NondeterministicTopDownRun,
    RunStep,
    RunTrace,
)

# Automata and grammars
from .automaton import BottomUpAutomaton
from .top_down import TopDownAutomaton
from .grammar import RegularGrammar, Production

# Rule text
from .dsl import parse_rule_line, load_rules_from_dsl

# Public API
__all__ = [
    # Version
    "__version__",
    # Errors
    "ArborError",
    "ArityError",
    "UnknownSymbolError",
    "CaptureError",
    "SignatureMismatchError",
    # Terms
    "Term",
    "Signature",
    "Substitution",
    "SymbolType",
    "StateType",
    "PositionType",
    "parse_term",
    "format_term",
    "format_state",
    # Rules
    "Key",
    "Rule",
    "RuleSet",
    "BottomUpRuleSet",
    "TopDownRuleSet",
    "Captures",
    # Runs
    "Run",
    "TopDownRun",
    "NondeterministicRun",
    "NondeterministicTopDownRun",
    "RunStep",
    "RunTrace",
    # Automata
    "BottomUpAutomaton",
    "TopDownAutomaton",
    "RegularGrammar",
    "Production",
    # Rule text
    "parse_rule_line",
    "load_rules_from_dsl",
]
