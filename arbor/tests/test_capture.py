"""Tests for capture groups collected during runs."""

import pytest
from arbor import BottomUpAutomaton, Signature, Captures, CaptureError


SIG = Signature({"cons": 2, "s": 1, "zero": 0, "empty": 0})

LIST = "cons(s(s(zero)), cons(s(zero), cons(s(s(s(zero))), empty)))"


def capturing_automaton():
    """Captures the last element as first_nat and the others as other_nat."""
    return BottomUpAutomaton.from_dsl(SIG, '''
        zero -> qnat
        s(qnat) -> qnat
        empty -> qlist
        cons(qnat, qlist) -> qnelist {0: first_nat}
        cons(qnat, qnelist) -> qnelist {0: other_nat}
    ''', final_states=["qnelist"])


class TestBottomUpCaptures:
    """Tests for captures in bottom-up runs."""

    def setup_method(self):
        self.a = capturing_automaton()
        self.tree = SIG.parse(LIST)

    def test_single_choice(self):
        r = self.a.run(self.tree)
        assert r.run()
        assert r.matches == {
            "other_nat": [SIG.parse("s(zero)"), SIG.parse("s(s(zero))")],
            "first_nat": [SIG.parse("s(s(s(zero)))")],
        }

    def test_search(self):
        r = self.a.run(self.tree, strategy="search")
        assert r.run()
        assert r.matches == {
            "other_nat": [SIG.parse("s(zero)"), SIG.parse("s(s(zero))")],
            "first_nat": [SIG.parse("s(s(s(zero)))")],
        }

    def test_captured_subtrees_are_clean_copies(self):
        r = self.a.run(self.tree)
        r.run()
        captured = r.matches["first_nat"][0]
        assert all(node.state is None for node in captured.walk())
        captured[0].symbol = "changed"
        assert str(self.tree) == LIST

    def test_no_captures_without_capture_rules(self):
        a = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> q
            s(q) -> q
        ''', final_states=["q"])
        r = a.run(SIG.parse("s(zero)"))
        assert r.run()
        assert r.matches == Captures()
        assert len(r.matches) == 0

    def test_nested_position(self):
        a = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> qnat
            s(qnat) -> qnat
            empty -> qlist
            cons(qnat, qlist) -> qlist {0.0: inner}
        ''', final_states=["qlist"])
        r = a.run(SIG.parse("cons(s(zero), empty)"))
        assert r.run()
        assert r.matches == {"inner": [SIG.parse("zero")]}

    def test_invalid_position(self):
        a = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> qnat {0: nothing}
        ''', final_states=["qnat"])
        with pytest.raises(CaptureError):
            a.run(SIG.parse("zero")).run()


class TestTopDownCaptures:
    """Tests for captures in top-down runs."""

    def test_search_order(self):
        td = capturing_automaton().to_top_down_automaton()
        r = td.run(SIG.parse(LIST))
        assert r.run()
        assert r.matches == {
            "other_nat": [SIG.parse("s(s(zero))"), SIG.parse("s(zero)")],
            "first_nat": [SIG.parse("s(s(s(zero)))")],
        }

    def test_abandoned_attempts_discarded(self):
        td = capturing_automaton().to_top_down_automaton()
        r = td.run(SIG.parse("cons(zero, cons(s(zero), empty))"))
        assert r.run()
        assert r.matches == {
            "other_nat": [SIG.parse("zero")],
            "first_nat": [SIG.parse("s(zero)")],
        }

    def test_deterministic_top_down(self):
        td = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> qnat
            empty -> qlist
            cons(qnat, qlist) -> qlist {0: item}
        ''', final_states=["qlist"]).to_top_down_automaton()
        r = td.run(SIG.parse("cons(zero, cons(zero, empty))"), strategy="single")
        assert r.run()
        assert r.matches == {"item": [SIG.parse("zero"), SIG.parse("zero")]}


def any_list():
    return BottomUpAutomaton.from_dsl(SIG, '''
        zero -> q
        s(q) -> q
        empty -> q
        cons(q, q) -> q
    ''', final_states=["q"])


class TestUnionCaptures:
    """Tests for the capture maps carried by product rules."""

    def test_capturing_side_kept(self):
        for u in (capturing_automaton() | any_list(), any_list() | capturing_automaton()):
            r = u.run(SIG.parse(LIST))
            assert r.run()
            assert r.matches == {
                "other_nat": [SIG.parse("s(zero)"), SIG.parse("s(s(zero))")],
                "first_nat": [SIG.parse("s(s(s(zero)))")],
            }

    def test_receiver_wins_on_shared_position(self):
        heads = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> qnat
            s(qnat) -> qnat
            empty -> qlist
            cons(qnat, qlist) -> qnelist {0: head}
        ''', final_states=["qnelist"])
        u = capturing_automaton() | heads
        r = u.run(SIG.parse("cons(zero, empty)"))
        assert r.run()
        assert r.matches == {"first_nat": [SIG.parse("zero")]}

    def test_entries_of_both_sides_merged(self):
        inner = BottomUpAutomaton.from_dsl(SIG, '''
            zero -> qnat
            s(qnat) -> qnat
            empty -> qlist
            cons(qnat, qlist) -> qnelist {1: tail}
        ''', final_states=["qnelist"])
        u = capturing_automaton() | inner
        r = u.run(SIG.parse("cons(zero, empty)"))
        assert r.run()
        assert r.matches == {"first_nat": [SIG.parse("zero")], "tail": [SIG.parse("empty")]}
