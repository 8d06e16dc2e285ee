"""Tests for keys, rules, rule sets and captures."""

import pytest
from arbor import (
    Key, Rule, BottomUpRuleSet, TopDownRuleSet, Captures, Signature, Term,
    ArityError, UnknownSymbolError, CaptureError,
)
from arbor.rules import push_captures


SIG = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})


class TestKey:
    """Tests for rule keys."""

    def test_constructors(self):
        assert str(Key.bottom_up("cons", "qnat", "qlist")) == "cons(qnat, qlist)"
        assert str(Key.bottom_up("zero")) == "zero"
        assert str(Key.top_down("qnelist", "cons")) == "qnelist(cons)"
        assert str(Key.epsilon("qnelist")) == "qnelist"

    def test_epsilon(self):
        assert Key.epsilon("q").is_epsilon
        assert not Key.bottom_up("zero").is_epsilon

    def test_size(self):
        assert Key.bottom_up("cons", "a", "b").size == 4
        assert Key.bottom_up("zero").size == 2

    def test_value_semantics(self):
        assert Key.bottom_up("s", "q") == Key.bottom_up("s", "q")
        assert hash(Key.bottom_up("s", "q")) == hash(Key.bottom_up("s", "q"))
        assert Key.top_down("q", "s") != Key.bottom_up("s", "q")

    def test_immutable(self):
        with pytest.raises(AttributeError):
            Key.bottom_up("zero").symbol = "empty"

    def test_rename(self):
        key = Key.bottom_up("cons", "a", "b").rename_states({"a": "x"})
        assert key == Key.bottom_up("cons", "x", "b")


class TestRule:
    """Tests for rule values."""

    def test_capture_normalized(self):
        rule = Rule("q", {1: "b", 0: "a"})
        assert rule.capture == (((0,), "a"), ((1,), "b"))
        assert rule.capture_map == {(0,): "a", (1,): "b"}

    def test_empty_capture_is_none(self):
        assert Rule("q", {}).capture is None
        assert Rule("q", {}) == Rule("q")

    def test_str(self):
        assert str(Rule("qnelist", {0: "first_nat"})) == "qnelist {0: first_nat}"
        assert str(Rule(frozenset({"b", "a"}))) == "{a, b}"

    def test_with_target(self):
        rule = Rule("q", {0: "x"}).with_target("p")
        assert rule == Rule("p", {0: "x"})

    def test_hashable(self):
        assert len({Rule("q"), Rule("q"), Rule("p")}) == 2


class TestRuleSet:
    """Tests for rule set mapping operations."""

    def setup_method(self):
        self.rules = BottomUpRuleSet()
        self.rules.insert(Key.bottom_up("zero"), Rule("qnat"))
        self.rules.insert(Key.bottom_up("s", "qnat"), Rule("qnat"))
        self.rules.insert(Key.bottom_up("cons", "qnat", "qlist"), Rule("qnelist"))
        self.rules.insert(Key.epsilon("qnelist"), Rule("qlist"))

    def test_lookup(self):
        assert self.rules.lookup(Key.bottom_up("zero")) == [Rule("qnat")]
        assert self.rules.lookup(Key.bottom_up("empty")) == []

    def test_insert_dedups(self):
        self.rules.insert(Key.bottom_up("zero"), Rule("qnat"))
        self.rules.insert(Key.bottom_up("zero"), Rule("qother"))
        assert self.rules.lookup(Key.bottom_up("zero")) == [Rule("qnat"), Rule("qother")]

    def test_insert_type_checks(self):
        with pytest.raises(TypeError):
            self.rules.insert(("zero",), Rule("q"))
        with pytest.raises(TypeError):
            self.rules.insert(Key.bottom_up("zero"), "q")

    def test_replace_requires_candidates(self):
        with pytest.raises(ValueError, match="must not be empty"):
            self.rules.replace(Key.bottom_up("zero"), [])

    def test_remove(self):
        assert self.rules.remove(Key.bottom_up("zero")) == [Rule("qnat")]
        assert Key.bottom_up("zero") not in self.rules
        assert self.rules.remove(Key.bottom_up("zero")) == []

    def test_len_and_size(self):
        assert len(self.rules) == 4
        assert self.rules.rules_size() == 2 + 3 + 4 + 2

    def test_epsilon_split(self):
        assert list(self.rules.epsilon_rules().keys()) == [Key.epsilon("qnelist")]
        assert len(self.rules.non_epsilon_rules()) == 3

    def test_copy_is_independent(self):
        copy = self.rules.copy()
        copy.insert(Key.bottom_up("zero"), Rule("qother"))
        assert self.rules.lookup(Key.bottom_up("zero")) == [Rule("qnat")]
        assert copy != self.rules

    def test_equality(self):
        other = BottomUpRuleSet({k: v for k, v in self.rules})
        assert other == self.rules
        assert TopDownRuleSet() != BottomUpRuleSet()

    def test_rename_states(self):
        renamed = self.rules.rename_states({"qnat": "n"})
        assert renamed.lookup(Key.bottom_up("s", "n")) == [Rule("n")]

    def test_rendering(self):
        self.rules.insert(Key.bottom_up("zero"), Rule("qz", {0: "x"}))
        assert self.rules.rule_lines() == [
            "zero -> [qnat, qz {0: x}]",
            "s(qnat) -> qnat",
            "cons(qnat, qlist) -> qnelist",
            "qnelist -> qlist",
        ]


class TestRuleSetCheck:
    """Tests for checking rule sets against a signature."""

    def test_bottom_up_arity(self):
        rules = BottomUpRuleSet({Key.bottom_up("s", "a", "b"): [Rule("q")]})
        with pytest.raises(ArityError, match="has arity 1"):
            rules.check(SIG)

    def test_unknown_symbol(self):
        rules = BottomUpRuleSet({Key.bottom_up("nil"): [Rule("q")]})
        with pytest.raises(UnknownSymbolError):
            rules.check(SIG)

    def test_top_down_successors(self):
        rules = TopDownRuleSet({Key.top_down("q", "cons"): [Rule(("q",))]})
        with pytest.raises(ArityError):
            rules.check(SIG)

    def test_top_down_rendering(self):
        rules = TopDownRuleSet()
        rules.insert(Key.top_down("q", "cons"), Rule(("qnat", "q"), {0: "n"}))
        rules.insert(Key.top_down("q", "empty"), Rule(()))
        rules.insert(Key.epsilon("q"), Rule("p"))
        assert rules.rule_lines() == [
            "q(cons) -> cons(qnat, q) {0: n}",
            "q(empty) -> empty",
            "q -> p",
        ]


class TestApply:
    """Tests for applying a single rule to a node."""

    def test_bottom_up_apply(self):
        rules = BottomUpRuleSet({Key.bottom_up("s", "qnat"): [Rule("qnat", {0: "inner"})]})
        node = Term("s", Term("zero", state="qnat"))
        captures = Captures()
        rule = rules.apply(node, captures)
        assert rule == Rule("qnat", {0: "inner"})
        assert node.state == "qnat"
        assert node[0].state is None
        assert captures == {"inner": [Term("zero")]}

    def test_bottom_up_no_rule(self):
        rules = BottomUpRuleSet()
        assert rules.apply(Term("zero"), Captures()) is None

    def test_top_down_apply(self):
        rules = TopDownRuleSet({Key.top_down("q", "s"): [Rule(("p",))]})
        node = Term("s", Term("zero"), state="q")
        rules.apply(node, Captures())
        assert node.state is None
        assert node[0].state == "p"

    def test_invalid_capture_position(self):
        with pytest.raises(CaptureError, match="Invalid capture position"):
            push_captures(Term("zero"), Rule("q", {0: "x"}), Captures())


class TestCaptures:
    """Tests for the capture accumulator."""

    def test_push_and_read(self):
        captures = Captures()
        captures.push("x", Term("zero"))
        captures.push("x", Term("empty"))
        assert captures["x"] == [Term("zero"), Term("empty")]
        assert "x" in captures
        assert captures.get("y", []) == []
        assert len(captures) == 1

    def test_extend(self):
        a = Captures({"x": [Term("zero")]})
        b = Captures({"x": [Term("empty")], "y": [Term("zero")]})
        a.extend(b)
        assert a == {"x": [Term("zero"), Term("empty")], "y": [Term("zero")]}

    def test_copy_is_independent(self):
        a = Captures({"x": [Term("zero")]})
        b = a.copy()
        b.push("x", Term("empty"))
        assert len(a["x"]) == 1

    def test_to_dict(self):
        assert Captures({"x": [Term("zero")]}).to_dict() == {"x": [Term("zero")]}
