"""Tests for conversions between automata and regular tree grammars."""

import pytest
from arbor import (
    BottomUpAutomaton, TopDownAutomaton, RegularGrammar, Production, Signature, Term,
    Key, Rule, ArityError, UnknownSymbolError,
)


SIG = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})

LIST = "cons(s(s(zero)), cons(s(zero), cons(s(s(s(zero))), empty)))"


def capturing_automaton():
    return BottomUpAutomaton.from_dsl(SIG, '''
        zero -> qnat
        s(qnat) -> qnat
        empty -> qlist
        cons(qnat, qlist) -> qnelist {0: first_nat}
        cons(qnat, qnelist) -> qnelist {0: other_nat}
    ''', final_states=["qnelist"])


class TestToGrammar:
    """Tests for building grammars from automata."""

    def setup_method(self):
        self.grammar = capturing_automaton().to_grammar()

    def test_axiom(self):
        assert self.grammar.axiom == Term("qnelist")

    def test_rendering(self):
        expected = (
            "<RegularGrammar:\n"
            "  axiom: qnelist\n"
            "  non_terminals: <Signature: {qnat, qlist, qnelist}>\n"
            "  terminals: <Signature: {cons(,), s(), zero, empty}>\n"
            "  rules:\n"
            "    qnat -> [zero, s(qnat)]\n"
            "    qlist -> empty\n"
            "    qnelist -> [cons(qnat, qlist) {0: first_nat}, cons(qnat, qnelist) {0: other_nat}]\n"
            ">\n"
        )
        assert str(self.grammar) == expected

    def test_normalized(self):
        assert self.grammar.is_normalized()

    def test_explicit_axiom(self):
        g = capturing_automaton().to_grammar(axiom="qnat")
        assert g.axiom == Term("qnat")

    def test_unknown_axiom(self):
        with pytest.raises(UnknownSymbolError, match="axiom"):
            capturing_automaton().to_grammar(axiom="nowhere")

    def test_several_initial_states(self):
        td = TopDownAutomaton(SIG, ["qa", "qb"], ["qa", "qb"], {
            Key.top_down("qa", "zero"): [Rule(())],
            Key.top_down("qb", "empty"): [Rule(())],
        })
        g = td.to_grammar()
        assert g.axiom == Term("__axiom")
        assert g.rules["__axiom"] == [Production(Term("qa")), Production(Term("qb"))]
        a = g.bottom_up_automaton()
        assert a.accepts(SIG.parse("zero"))
        assert a.accepts(SIG.parse("empty"))
        assert not a.accepts(SIG.parse("s(zero)"))

    def test_no_initial_state(self):
        td = TopDownAutomaton(SIG, ["q"], [], {Key.top_down("q", "zero"): [Rule(())]})
        with pytest.raises(ValueError, match="axiom"):
            td.to_grammar()


class TestFromGrammar:
    """Tests for building automata from grammars."""

    def setup_method(self):
        self.grammar = capturing_automaton().to_grammar()

    def test_bottom_up_round_trip(self):
        assert self.grammar.bottom_up_automaton() == capturing_automaton()

    def test_top_down_round_trip(self):
        assert self.grammar.top_down_automaton() == capturing_automaton().to_top_down_automaton()

    def test_captures_preserved(self):
        r = self.grammar.bottom_up_automaton().run(SIG.parse(LIST))
        assert r.run()
        assert r.matches == {
            "other_nat": [SIG.parse("s(zero)"), SIG.parse("s(s(zero))")],
            "first_nat": [SIG.parse("s(s(s(zero)))")],
        }

    def test_chain_productions(self):
        g = RegularGrammar(Term("list"), Signature({"list": 0, "nat": 0}), SIG, {
            "list": [Production(Term("empty")), Production(Term("nat"))],
            "nat": [Production(Term("zero"))],
        })
        bu = g.bottom_up_automaton()
        assert bu.rules.lookup(Key.epsilon("nat")) == [Rule("list")]
        assert bu.accepts(SIG.parse("zero"))
        td = g.top_down_automaton()
        assert td.rules.lookup(Key.epsilon("list")) == [Rule("nat")]
        assert td.accepts(SIG.parse("zero"))

    def test_not_normalized(self):
        g = RegularGrammar(Term("x"), Signature({"x": 0}), SIG, {
            "x": [Production(SIG.parse("s(zero)"))],
        })
        assert not g.is_normalized()
        with pytest.raises(ValueError, match="normalized"):
            g.bottom_up_automaton()
        with pytest.raises(ValueError, match="normalized"):
            g.top_down_automaton()


class TestRegularGrammar:
    """Tests for grammar construction and renaming."""

    def test_axiom_must_be_non_terminal(self):
        with pytest.raises(UnknownSymbolError):
            RegularGrammar(Term("zero"), Signature({"x": 0}), SIG, {})

    def test_non_terminal_arity(self):
        with pytest.raises(ArityError):
            RegularGrammar(Term("x"), Signature({"x": 1}), SIG, {})

    def test_unknown_lhs(self):
        with pytest.raises(UnknownSymbolError):
            RegularGrammar(Term("x"), Signature({"x": 0}), SIG, {"y": []})

    def test_production_arity(self):
        with pytest.raises(ArityError):
            RegularGrammar(Term("x"), Signature({"x": 0}), SIG, {
                "x": [Production(Term("cons", Term("x")))],
            })

    def test_rename_non_terminals(self):
        g = capturing_automaton().to_grammar().rename_non_terminals()
        assert g.axiom == Term("nt2")
        assert g.non_terminals.symbols() == ["nt0", "nt1", "nt2"]
        assert g.rules["nt2"][0] == Production(
            Term("cons", Term("nt0"), Term("nt1")), {0: "first_nat"})
        assert g.bottom_up_automaton().accepts(SIG.parse("cons(zero, empty)"))
