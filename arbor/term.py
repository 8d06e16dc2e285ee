"""
Ranked terms, signatures and substitutions.

ARBOR - Automata over Ranked Bottom-up and top-down ORdered trees

This module provides the tree data model shared by every other component:
a mutable Term node, the Signature that declares a ranked alphabet, and the
Substitution that instantiates pattern variables.

Text form:
    zero                      - constant
    cons(s(zero), empty)      - compound term
    ?x                        - pattern variable
    q0(cons(zero, empty))     - node annotated with state q0 (output only)
"""

import re
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import ArityError, UnknownSymbolError

# Type aliases
SymbolType = str
StateType = Any  # any hashable value: str, frozenset of states, ...
PositionType = Tuple[int, ...]

TRAVERSAL_ORDERS = ("post", "pre")


# ============================================================
# State formatting
# ============================================================

def format_state(state: StateType) -> str:
    """
    Render a state for display.

    Set-valued states (produced by determinization and minimization) are
    rendered with sorted members so that output does not depend on hashing.

    Examples:
        format_state("q0")                      -> "q0"
        format_state(frozenset({"q1", "q0"}))   -> "{q0, q1}"
    """
    if isinstance(state, (frozenset, set)):
        return "{" + ", ".join(sorted(format_state(s) for s in state)) + "}"
    if isinstance(state, tuple):
        return "(" + ", ".join(format_state(s) for s in state) + ")"
    return str(state)


# ============================================================
# Term
# ============================================================

class Term:
    """
    An ordered, ranked tree node.

    A term has a symbol, an ordered list of children, an optional state
    annotation and a variable flag. Terms are mutable: automaton runs write
    states into nodes as they go. Always ``copy()`` a term before handing it
    to code that may mutate it.

        t = Term("cons", Term("zero"), Term("empty"))
        t.arity        # => 2
        t[(0,)]        # => Term('zero')
        str(t)         # => "cons(zero, empty)"

    Equality compares symbols, states and children node by node. Terms are
    unhashable because they are mutable.
    """

    __slots__ = ("symbol", "children", "state", "is_variable")

    def __init__(self, symbol: Optional[SymbolType], *children: "Term",
                 state: StateType = None, variable: bool = False):
        self.symbol = symbol
        self.children: List[Term] = list(children)
        self.state = state
        self.is_variable = variable

    # ------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------

    @property
    def arity(self) -> int:
        return len(self.children)

    @property
    def is_constant(self) -> bool:
        return not self.is_variable and not self.children

    @property
    def is_ground(self) -> bool:
        """True if no variable occurs in the term."""
        return not any(node.is_variable for node in self.walk("pre"))

    @property
    def is_linear(self) -> bool:
        """True if no variable occurs more than once."""
        seen = set()
        for node in self.walk("pre"):
            if node.is_variable:
                if node.symbol in seen:
                    return False
                seen.add(node.symbol)
        return True

    def height(self) -> int:
        heights: Dict[int, int] = {}
        for node in self.walk("post"):
            if node.is_variable:
                heights[id(node)] = 0
            elif not node.children:
                heights[id(node)] = 1
            else:
                heights[id(node)] = 1 + max(heights[id(c)] for c in node.children)
        return heights[id(self)]

    def size(self) -> int:
        return sum(1 for node in self.walk("pre") if not node.is_variable)

    def positions(self) -> List[PositionType]:
        """All positions in pre-order, the root position () first."""
        return [pos for pos, _ in self.walk_positions("pre")]

    def frontier_positions(self) -> List[PositionType]:
        """Positions of the leaves, left to right."""
        return [pos for pos, node in self.walk_positions("pre") if not node.children]

    def variable_positions(self) -> List[PositionType]:
        """Positions of the variable leaves, left to right."""
        return [pos for pos, node in self.walk_positions("pre") if node.is_variable]

    # ------------------------------------------------------------
    # Position access
    # ------------------------------------------------------------

    def __getitem__(self, position: Union[int, PositionType]) -> "Term":
        """Return the subterm at a position: t[(0, 1)] or t[0]."""
        if isinstance(position, int):
            position = (position,)
        node = self
        for index in position:
            if index < 0 or index >= len(node.children):
                raise IndexError(f"Invalid position {tuple(position)} in {self}")
            node = node.children[index]
        return node

    def __setitem__(self, position: Union[int, PositionType], value: "Term") -> None:
        """Replace the subterm at a non-root position."""
        if isinstance(position, int):
            position = (position,)
        position = tuple(position)
        if not position:
            raise ValueError("Cannot replace the root of a term in place")
        parent = self[position[:-1]]
        index = position[-1]
        if index < 0 or index >= len(parent.children):
            raise IndexError(f"Invalid position {position} in {self}")
        parent.children[index] = value

    # ------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------

    def walk(self, order: str = "post") -> Iterator["Term"]:
        """Iterate over nodes in post-order (leaves first) or pre-order."""
        for _, node in self._traverse(order, False):
            yield node

    def walk_positions(self, order: str = "post") -> Iterator[Tuple[PositionType, "Term"]]:
        """Iterate over (position, node) pairs in the given order."""
        return self._traverse(order, True)

    def _traverse(self, order: str, track: bool) -> Iterator[Tuple[Optional[PositionType], "Term"]]:
        """
        Explicit-stack traversal, so arbitrarily tall trees can be walked.

        Positions are only built when track is set. Children are read when a
        node is reached (pre-order) or expanded (post-order); a pre-order
        consumer may still change node states.
        """
        if order not in TRAVERSAL_ORDERS:
            raise ValueError(f"Unknown traversal order: {order}. "
                             f"Valid options: {', '.join(TRAVERSAL_ORDERS)}")
        if order == "pre":
            stack = [(() if track else None, self)]
            while stack:
                position, node = stack.pop()
                yield position, node
                for i in range(len(node.children) - 1, -1, -1):
                    stack.append((position + (i,) if track else None, node.children[i]))
            return
        pending = [(() if track else None, self, False)]
        while pending:
            position, node, expanded = pending.pop()
            if expanded or not node.children:
                yield position, node
                continue
            pending.append((position, node, True))
            for i in range(len(node.children) - 1, -1, -1):
                pending.append((position + (i,) if track else None, node.children[i], False))

    # ------------------------------------------------------------
    # Copying and run bookkeeping
    # ------------------------------------------------------------

    def copy(self) -> "Term":
        """Deep copy; the copy shares no node with the original."""
        root = Term(self.symbol, state=self.state, variable=self.is_variable)
        stack = [(self, root)]
        while stack:
            source, target = stack.pop()
            for child in source.children:
                clone = Term(child.symbol, state=child.state, variable=child.is_variable)
                target.children.append(clone)
                stack.append((child, clone))
        return root

    def clear_states(self) -> "Term":
        """Remove every state annotation in place. Returns self."""
        for node in self.walk("pre"):
            node.state = None
        return self

    def rename_states(self, mapping: Dict[StateType, StateType]) -> "Term":
        """Rename state annotations in place. Returns self."""
        for node in self.walk("pre"):
            if node.state is not None and node.state in mapping:
                node.state = mapping[node.state]
        return self

    # ------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------

    def __eq__(self, other) -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        pairs = [(self, other)]
        while pairs:
            left, right = pairs.pop()
            if (left.symbol != right.symbol or left.state != right.state
                    or len(left.children) != len(right.children)):
                return False
            pairs.extend(zip(left.children, right.children))
        return True

    __hash__ = None

    def __lt__(self, other: "Term") -> bool:
        """Proper subterm: self occurs strictly below the root of other."""
        if not isinstance(other, Term):
            return NotImplemented
        nodes = other.walk("pre")
        next(nodes)
        return any(self == node for node in nodes)

    def __le__(self, other: "Term") -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return self == other or self < other

    def __gt__(self, other: "Term") -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return other < self

    def __ge__(self, other: "Term") -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return other <= self

    def __str__(self) -> str:
        return format_term(self)

    def __repr__(self) -> str:
        return f"Term({format_term(self)!r})"


# ============================================================
# Text form
# ============================================================

_TOKEN_RE = re.compile(r"[(),]|[^\s(),]+")


def format_term(term: Term) -> str:
    """
    Format a term in its text form.

    Examples:
        cons(s(zero), empty)
        q0(zero)              - node annotated with state q0
        ?x                    - variable
    """
    texts: Dict[int, str] = {}
    for node in term.walk("post"):
        if node.is_variable:
            text = f"?{node.symbol}"
        elif node.symbol is None:
            text = ""
        elif node.children:
            text = f"{node.symbol}(" + ", ".join(texts[id(c)] for c in node.children) + ")"
        else:
            text = str(node.symbol)
        if node.state is not None:
            state = format_state(node.state)
            text = f"{state}({text})" if text else state
        texts[id(node)] = text
    return texts[id(term)]


def parse_term(text: str) -> Term:
    """
    Parse the text form of a term.

    Examples:
        parse_term("cons(zero, empty)")  -> Term("cons", Term("zero"), Term("empty"))
        parse_term("f(?x, a)")           -> Term("f", Term("x", variable=True), Term("a"))

    Raises:
        ValueError: If the text is not a well-formed term
    """
    tokens = _TOKEN_RE.findall(text)
    if not tokens:
        raise ValueError("Cannot parse an empty term")
    term, index = _parse_tokens(tokens, 0, text)
    if index != len(tokens):
        raise ValueError(f"Unexpected trailing input in term: {text!r}")
    return term


def _parse_tokens(tokens: List[str], index: int, text: str) -> Tuple[Term, int]:
    """Parse one term starting at tokens[index]; return (term, next index)."""
    if index >= len(tokens):
        raise ValueError(f"Unexpected end of term: {text!r}")
    name = tokens[index]
    if name in "(),":
        raise ValueError(f"Expected a symbol but found {name!r} in {text!r}")
    index += 1

    if name.startswith("?"):
        if len(name) == 1:
            raise ValueError(f"Variable without a name in {text!r}")
        return Term(name[1:], variable=True), index

    children = []
    if index < len(tokens) and tokens[index] == "(":
        index += 1
        if index < len(tokens) and tokens[index] == ")":
            return Term(name), index + 1
        while True:
            child, index = _parse_tokens(tokens, index, text)
            children.append(child)
            if index >= len(tokens):
                raise ValueError(f"Unbalanced parentheses in {text!r}")
            if tokens[index] == ",":
                index += 1
            elif tokens[index] == ")":
                index += 1
                break
            else:
                raise ValueError(f"Expected ',' or ')' but found {tokens[index]!r} in {text!r}")
    return Term(name, *children), index


# ============================================================
# Signature
# ============================================================

class Signature:
    """
    A ranked alphabet: symbol -> arity, plus declared variable and state names.

    The single ``make`` constructor builds arity-checked terms for any symbol:

        sig = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})
        sig.make("cons", sig.make("zero"), "empty")   # strings name constants
        sig.parse("cons(s(zero), empty)")
        sig.arity("cons")                              # => 2

    Signatures compare by value (alphabet and variables).
    """

    def __init__(self, alphabet: Dict[SymbolType, int],
                 variables: Iterable[SymbolType] = (),
                 states: Iterable[StateType] = ()):
        for symbol, arity in alphabet.items():
            if not isinstance(arity, int) or arity < 0:
                raise ValueError(f"Invalid arity for symbol '{symbol}': {arity!r}")
        self._alphabet: Dict[SymbolType, int] = dict(alphabet)
        self._variables: Tuple[SymbolType, ...] = tuple(dict.fromkeys(variables))
        self._states: Tuple[StateType, ...] = tuple(dict.fromkeys(states))

    @property
    def alphabet(self) -> Dict[SymbolType, int]:
        """A copy of the symbol -> arity table."""
        return dict(self._alphabet)

    @property
    def variables(self) -> Tuple[SymbolType, ...]:
        return self._variables

    @property
    def states(self) -> Tuple[StateType, ...]:
        return self._states

    def arity(self, symbol: SymbolType) -> int:
        """Return the arity of a symbol."""
        if symbol not in self._alphabet:
            raise UnknownSymbolError(f"Unknown symbol '{symbol}' for {self}")
        return self._alphabet[symbol]

    def symbols(self) -> List[SymbolType]:
        return list(self._alphabet)

    def make(self, symbol: SymbolType, *children: Union[Term, SymbolType],
             state: StateType = None) -> Term:
        """
        Build a term, checking the number of children against the arity.

        String children are shorthand for constants of this signature.

        Raises:
            UnknownSymbolError: If symbol is not in the alphabet
            ArityError: If the number of children differs from the arity
        """
        arity = self.arity(symbol)
        if len(children) != arity:
            raise ArityError(
                f"Invalid child number for '{symbol}': {len(children)}, expected {arity}")
        built = [self.make(c) if isinstance(c, str) else c for c in children]
        return Term(symbol, *built, state=state)

    def variable(self, name: SymbolType) -> Term:
        """Build a variable leaf."""
        return Term(name, variable=True)

    def parse(self, text: str) -> Term:
        """Parse a term and check it against this signature."""
        term = parse_term(text)
        self.check(term)
        return term

    def check(self, term: Term) -> Term:
        """
        Check every non-variable node of a term against the alphabet.

        Returns the term unchanged.
        """
        for node in term.walk("pre"):
            if node.is_variable:
                continue
            arity = self.arity(node.symbol)
            if node.arity != arity:
                raise ArityError(
                    f"Invalid child number for '{node.symbol}': {node.arity}, expected {arity}")
        return term

    def __iter__(self) -> Iterator[Tuple[SymbolType, int]]:
        """Iterate over (symbol, arity) pairs in declaration order."""
        return iter(list(self._alphabet.items()))

    def __contains__(self, symbol) -> bool:
        return symbol in self._alphabet

    def __len__(self) -> int:
        return len(self._alphabet)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Signature):
            return NotImplemented
        return self._alphabet == other._alphabet and set(self._variables) == set(other._variables)

    def __hash__(self) -> int:
        return hash((frozenset(self._alphabet.items()), frozenset(self._variables)))

    def __repr__(self) -> str:
        parts = [s + (f"({',' * (a - 1)})" if a > 0 else "") for s, a in self._alphabet.items()]
        text = "<Signature: {" + ", ".join(parts)
        if self._variables:
            text += "}, variables: {" + ", ".join(self._variables)
        return text + "}>"


# ============================================================
# Substitution
# ============================================================

class Substitution:
    """
    A mapping from variable names to terms.

    Applying a substitution replaces every variable leaf bound in ``rules``
    by a fresh copy of its replacement, so repeated occurrences never alias:

        sub = Substitution(sig, {"x": sig.make("zero")})
        sub(parse_term("cons(?x, ?x)"))   # => cons(zero, zero)
    """

    def __init__(self, signature: Signature, rules: Dict[Union[SymbolType, Term], Term]):
        self.signature = signature
        self.rules: Dict[SymbolType, Term] = {}
        for name, value in rules.items():
            if isinstance(name, Term):
                if not name.is_variable:
                    raise ValueError(f"Substitution key {name} is not a variable")
                name = name.symbol
            self.rules[name] = value

    def apply(self, term: Term) -> Term:
        if term.is_variable:
            replacement = self.rules.get(term.symbol)
            return replacement.copy() if replacement is not None else term.copy()
        return Term(term.symbol, *(self.apply(c) for c in term.children))

    __call__ = apply

    def is_ground(self) -> bool:
        """True if every replacement is a ground term."""
        return all(value.is_ground for value in self.rules.values())

    def domain(self) -> set:
        """Variables actually changed by the substitution."""
        return {name for name, value in self.rules.items()
                if not (value.is_variable and value.symbol == name)}

    def __repr__(self) -> str:
        pairs = ", ".join(f"?{k} -> {v}" for k, v in self.rules.items())
        return f"Substitution({{{pairs}}})"
