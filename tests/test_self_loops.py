"""Tests for self-loop insertion."""

import math

import pytest
from pynini import Arc, Fst, Weight

from hmmgraph.errors import HmmContractError
from hmmgraph.wfst.build_h import HTransducerConfig, get_h_transducer
from hmmgraph.wfst.self_loops import TidToTstateMapper, add_self_loops

from conftest import arc_prob_sum


def self_loops(fst, state):
    return [arc for arc in fst.arcs(state) if arc.nextstate == state]


def fork_fst(first, second):
    """Start state with two arcs to final states: 0 -first-> 1, 0 -second-> 2."""
    fst = Fst()
    one = Weight.one(fst.weight_type())
    for _ in range(3):
        fst.add_state()
    fst.set_start(0)
    fst.add_arc(0, Arc(first, 0, one, 1))
    fst.add_arc(0, Arc(second, 0, one, 2))
    fst.set_final(1)
    fst.set_final(2)
    return fst


def join_fst(first, second):
    """Two arcs into one state: 0 -first-> 1, 0 -second-> 1 -eps-> 2."""
    fst = Fst()
    one = Weight.one(fst.weight_type())
    for _ in range(3):
        fst.add_state()
    fst.set_start(0)
    fst.add_arc(0, Arc(first, 0, one, 1))
    fst.add_arc(0, Arc(second, 0, one, 1))
    fst.add_arc(1, Arc(0, 0, one, 2))
    fst.set_final(2)
    return fst


class TestTidToTstateMapper:
    """Test cases for the label classifier."""

    def test_classes(self, trans_model):
        """Test classes of transition-ids and special labels."""
        mapper = TidToTstateMapper(trans_model, [11, 12], check_no_self_loops=False)
        assert mapper(-1) == -1
        assert mapper(0) == 0
        assert mapper(1) == 1
        assert mapper(8) == 4
        assert mapper(12) == 0
        assert mapper(20000000) == 0

    def test_undeclared_symbol(self, trans_model):
        """Test that undeclared disambiguation symbols are rejected."""
        mapper = TidToTstateMapper(trans_model, [11], check_no_self_loops=False)
        with pytest.raises(HmmContractError):
            mapper(12)

    def test_self_loop_check(self, trans_model):
        """Test rejection of self-loops in a self-loop-free graph."""
        mapper = TidToTstateMapper(trans_model, [], check_no_self_loops=True)
        assert mapper(2) == 1
        with pytest.raises(HmmContractError):
            mapper(1)

    def test_unsorted_symbols(self, trans_model):
        """Test that the symbol list must be sorted and unique."""
        with pytest.raises(HmmContractError):
            TidToTstateMapper(trans_model, [12, 11], check_no_self_loops=False)
        with pytest.raises(HmmContractError):
            TidToTstateMapper(trans_model, [11, 11], check_no_self_loops=False)


class TestAddSelfLoops:
    """Test cases for the non-reordered layout."""

    def test_stochasticity_preserved(self, tree, trans_model):
        """Test that each state keeps its probability mass."""
        h_fst, disambig = get_h_transducer([(), (1,), (3,)], tree, trans_model)
        num_states = h_fst.num_states()
        before = [arc_prob_sum(h_fst, s) for s in range(num_states)]

        add_self_loops(trans_model, disambig, True, True, h_fst)

        for s in range(num_states):
            assert arc_prob_sum(h_fst, s) == pytest.approx(before[s], rel=1e-5)
        for s in range(num_states, h_fst.num_states()):
            assert arc_prob_sum(h_fst, s) == pytest.approx(1.0, rel=1e-5)

    def test_two_state_phone(self, tree, trans_model):
        """Test loop and forward probabilities of the two-state phone."""
        h_fst, disambig = get_h_transducer([(), (1,)], tree, trans_model)
        add_self_loops(trans_model, disambig, True, True, h_fst)

        probs = {}
        for s in h_fst.states():
            for arc in h_fst.arcs(s):
                if arc.ilabel:
                    probs[arc.ilabel] = math.exp(-float(arc.weight))
        assert probs == pytest.approx({1: 0.5, 2: 0.5, 3: 0.4, 4: 0.6}, rel=1e-5)

        looped = [s for s in h_fst.states() if self_loops(h_fst, s)]
        assert sorted(self_loops(h_fst, s)[0].ilabel for s in looped) == [1, 3]

    def test_mixed_state_split(self, trans_model):
        """Test that a state leaving on two transition-states is split."""
        fst = fork_fst(2, 6)
        add_self_loops(trans_model, [], True, True, fst)

        assert fst.num_states() == 5
        assert all(arc.ilabel == 0 for arc in fst.arcs(0))
        for arc in fst.arcs(0):
            forward = [a for a in fst.arcs(arc.nextstate) if a.nextstate != arc.nextstate]
            loops = self_loops(fst, arc.nextstate)
            assert len(forward) == 1 and len(loops) == 1
            tstate = trans_model.transition_id_to_transition_state(forward[0].ilabel)
            assert loops[0].ilabel == trans_model.self_loop_of(tstate)

    def test_without_weights(self, tree, trans_model):
        """Test that unweighted self-loops leave other weights alone."""
        h_fst, disambig = get_h_transducer([(), (1,)], tree, trans_model)
        add_self_loops(trans_model, disambig, True, False, h_fst)
        weights = [float(arc.weight) for s in h_fst.states() for arc in h_fst.arcs(s)]
        assert all(w == pytest.approx(0.0, abs=1e-6) for w in weights)

    def test_existing_loops_rejected(self, tree, trans_model):
        """Test that a graph declared self-loop-free must be."""
        config = HTransducerConfig(include_self_loops=True)
        h_fst, disambig = get_h_transducer([(), (1,)], tree, trans_model, config)
        with pytest.raises(HmmContractError):
            add_self_loops(trans_model, disambig, True, True, h_fst)

    def test_existing_loops_not_duplicated(self, tree, trans_model):
        """Test that states with their self-loop are left alone."""
        config = HTransducerConfig(include_self_loops=True)
        h_fst, disambig = get_h_transducer([(), (1,)], tree, trans_model, config)
        num_arcs = sum(h_fst.num_arcs(s) for s in h_fst.states())

        add_self_loops(trans_model, disambig, False, True, h_fst)

        assert sum(h_fst.num_arcs(s) for s in h_fst.states()) == num_arcs
        assert all(len(self_loops(h_fst, s)) <= 1 for s in h_fst.states())

    def test_disambiguation_symbols(self, tree, trans_model):
        """Test that disambiguation arcs must be declared and get no loops."""
        h_fst, disambig = get_h_transducer([(), (1,), (-1,)], tree, trans_model)
        assert disambig == [11]
        with pytest.raises(HmmContractError):
            add_self_loops(trans_model, [], True, True, h_fst.copy())

        add_self_loops(trans_model, disambig, True, True, h_fst)
        loop_labels = [arc.ilabel for s in h_fst.states() for arc in self_loops(h_fst, s)]
        assert 11 not in loop_labels

    def test_empty_graph(self, trans_model):
        """Test that a graph without start state is left as is."""
        fst = Fst()
        assert add_self_loops(trans_model, [], True, True, fst).num_states() == 0


class TestAddSelfLoopsReordered:
    """Test cases for the reordered layout."""

    def test_loops_on_entered_states(self, tree, reordered_model):
        """Test loop placement and stochasticity."""
        h_fst, disambig = get_h_transducer([(), (1,)], tree, reordered_model)
        add_self_loops(reordered_model, disambig, True, True, h_fst)

        assert h_fst.num_states() == 3
        start_arc = next(iter(h_fst.arcs(0)))
        assert start_arc.ilabel == 2
        assert [a.ilabel for a in self_loops(h_fst, start_arc.nextstate)] == [1]
        for s in (1, 2):
            assert arc_prob_sum(h_fst, s) == pytest.approx(1.0, rel=1e-5)
        assert not self_loops(h_fst, 0)

    def test_mixed_state_copied(self, reordered_model):
        """Test that a state entered on two transition-states is copied."""
        fst = join_fst(2, 6)
        add_self_loops(reordered_model, [], True, True, fst)

        targets = [arc.nextstate for arc in fst.arcs(0)]
        assert len(set(targets)) == 2
        assert 1 not in targets
        for arc in fst.arcs(0):
            loops = self_loops(fst, arc.nextstate)
            assert len(loops) == 1
            tstate = reordered_model.transition_id_to_transition_state(arc.ilabel)
            assert loops[0].ilabel == reordered_model.self_loop_of(tstate)
            assert arc_prob_sum(fst, arc.nextstate) == pytest.approx(1.0, rel=1e-5)
