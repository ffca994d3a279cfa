"""Add self-loops to a graph built without them.

Graphs are normally compiled without self-loops, which keeps
determinization and minimization cheap; the self-loops are put back at the
end. Two layouts are supported, chosen by the transition model:

- Non-reordered: the self-loop of a transition-state sits on the state its
  transition-ids leave, before the forward transition.
- Reordered: the self-loop sits on the state its transition-ids enter,
  after the forward transition.

In both cases states are first split so that each needs at most one
self-loop.
"""

import logging
from bisect import bisect_left
from typing import Callable, Dict, List, Sequence, Tuple

from pynini import Arc, Fst, Weight

from ..errors import HmmContractError
from ..transitions import TransitionModel
from .build_h import NONTERM_BIG_NUMBER, cost_to_weight, is_final

logger = logging.getLogger(__name__)

NO_LABEL = -1
NO_CLASS = -1


class TidToTstateMapper:
    """Map graph input labels to transition-states.

    Epsilon, disambiguation symbols and grammar-decoding symbols map to 0,
    NO_LABEL maps to NO_CLASS.
    """

    def __init__(self, trans_model: TransitionModel, disambig_syms: Sequence[int],
                 check_no_self_loops: bool):
        """Initialize mapper.

        Args:
            trans_model: Transition model
            disambig_syms: Sorted, unique disambiguation symbols
            check_no_self_loops: Raise when a self-loop transition-id is seen
        """
        disambig_syms = list(disambig_syms)
        if any(a >= b for a, b in zip(disambig_syms, disambig_syms[1:])):
            raise HmmContractError("Disambiguation symbols must be sorted and unique")
        self.trans_model = trans_model
        self.disambig_syms = disambig_syms
        self.check_no_self_loops = check_no_self_loops

    def _is_disambig(self, label: int) -> bool:
        i = bisect_left(self.disambig_syms, label)
        return i < len(self.disambig_syms) and self.disambig_syms[i] == label

    def __call__(self, label: int) -> int:
        if label == NO_LABEL:
            return NO_CLASS
        if 1 <= label <= self.trans_model.num_transition_ids:
            if self.check_no_self_loops and self.trans_model.is_self_loop(label):
                raise HmmContractError(
                    f"Graph declared self-loop-free has self-loop transition-id {label}")
            return self.trans_model.transition_id_to_transition_state(label)
        if label != 0 and label < NONTERM_BIG_NUMBER and not self._is_disambig(label):
            raise HmmContractError(
                f"Label {label} is neither a transition-id nor a declared "
                "disambiguation symbol")
        return 0


def _times(weight: Weight, cost: float) -> Weight:
    return cost_to_weight(weight.type(), float(weight) + cost)


def _has_self_loop(fst: Fst, state: int, trans_id: int) -> bool:
    return any(arc.nextstate == state and arc.ilabel == trans_id
               for arc in fst.arcs(state))


def make_following_input_symbols_same_class(fst: Fst,
                                            classify: Callable[[int], int]) -> None:
    """Split states so all arcs leaving a state share one input class.

    A final state counts as having a leaving arc of the epsilon class. Each
    non-epsilon arc of a mixed state is replaced by an epsilon arc, with the
    original output label and weight, to a new state that carries the
    original input label onward.
    """
    epsilon_class = classify(0)
    bad_states = []
    for s in fst.states():
        c = NO_CLASS
        bad = False
        for arc in fst.arcs(s):
            arc_class = classify(arc.ilabel)
            if c == NO_CLASS:
                c = arc_class
            elif c != arc_class:
                bad = True
                break
        if c not in (NO_CLASS, epsilon_class) and is_final(fst, s):
            bad = True
        if bad:
            bad_states.append(s)

    for s in bad_states:
        one = Weight.one(fst.weight_type())
        new_arcs = []
        for arc in list(fst.arcs(s)):
            if arc.ilabel == 0:
                new_arcs.append(Arc(0, arc.olabel, arc.weight, arc.nextstate))
                continue
            new_state = fst.add_state()
            fst.add_arc(new_state, Arc(arc.ilabel, 0, one, arc.nextstate))
            new_arcs.append(Arc(0, arc.olabel, arc.weight, new_state))
        fst.delete_arcs(s)
        for arc in new_arcs:
            fst.add_arc(s, arc)

    if bad_states:
        logger.debug(f"Split {len(bad_states)} states with mixed following input classes")


def make_preceding_input_symbols_same_class(fst: Fst,
                                            classify: Callable[[int], int]) -> None:
    """Split states so all arcs entering a state share one input class.

    The start state counts as entered by an epsilon arc. A state entered
    with several classes gets one copy per class; copies have the same
    leaving arcs and final weight, and entering arcs are redirected to the
    copy of their class.
    """
    start = fst.start()
    classes: Dict[int, int] = {}
    if start >= 0:
        classes[start] = classify(0)
    bad_states = set()
    for s in fst.states():
        for arc in fst.arcs(s):
            arc_class = classify(arc.ilabel)
            known = classes.setdefault(arc.nextstate, arc_class)
            if known != arc_class:
                bad_states.add(arc.nextstate)
    if not bad_states:
        return

    # Copies are made from the arcs as they are before any redirection.
    original_arcs = {s: list(fst.arcs(s)) for s in bad_states}
    copies: Dict[Tuple[int, int], int] = {}
    for s in range(fst.num_states()):
        for arc in list(fst.arcs(s)):
            if arc.nextstate not in bad_states:
                continue
            key = (arc.nextstate, classify(arc.ilabel))
            if key in copies:
                continue
            copy = fst.add_state()
            copies[key] = copy
            for orig in original_arcs[arc.nextstate]:
                fst.add_arc(copy, Arc(orig.ilabel, orig.olabel, orig.weight, orig.nextstate))
            fst.set_final(copy, fst.final(arc.nextstate))

    for s in range(fst.num_states()):
        redirected: List[Arc] = []
        changed = False
        for arc in list(fst.arcs(s)):
            nextstate = arc.nextstate
            if nextstate in bad_states:
                nextstate = copies[(nextstate, classify(arc.ilabel))]
                changed = True
            redirected.append(Arc(arc.ilabel, arc.olabel, arc.weight, nextstate))
        if changed:
            fst.delete_arcs(s)
            for arc in redirected:
                fst.add_arc(s, arc)

    logger.debug(f"Split {len(bad_states)} states with mixed preceding input classes")


def _add_self_loops_no_reorder(trans_model: TransitionModel,
                               mapper: TidToTstateMapper,
                               use_weights: bool,
                               fst: Fst) -> None:
    make_following_input_symbols_same_class(fst, mapper)
    weight_type = fst.weight_type()
    scale = 1.0 if use_weights else 0.0

    for s in range(fst.num_states()):
        tstate = NO_CLASS
        for arc in fst.arcs(s):
            arc_class = mapper(arc.ilabel)
            if tstate == NO_CLASS:
                tstate = arc_class
            elif tstate != arc_class:
                raise HmmContractError(f"State {s} has leaving arcs of mixed classes")
        if tstate <= 0:
            continue
        self_loop = trans_model.self_loop_of(tstate)
        if self_loop == 0 or _has_self_loop(fst, s, self_loop):
            continue

        forward_cost = -trans_model.get_non_self_loop_log_prob(tstate) * scale
        if forward_cost != 0.0:
            maiter = fst.mutable_arcs(s)
            while not maiter.done():
                arc = maiter.value()
                arc.weight = _times(arc.weight, forward_cost)
                maiter.set_value(arc)
                maiter.next()
        loop_cost = -trans_model.get_transition_log_prob(self_loop) * scale
        fst.add_arc(s, Arc(self_loop, 0, cost_to_weight(weight_type, loop_cost), s))


def _add_self_loops_reorder(trans_model: TransitionModel,
                            mapper: TidToTstateMapper,
                            use_weights: bool,
                            fst: Fst) -> None:
    make_preceding_input_symbols_same_class(fst, mapper)
    weight_type = fst.weight_type()
    scale = 1.0 if use_weights else 0.0

    state_in = [NO_CLASS] * fst.num_states()
    start = fst.start()
    state_in[start] = 0
    for s in fst.states():
        for arc in fst.arcs(s):
            arc_class = mapper(arc.ilabel)
            if state_in[arc.nextstate] == NO_CLASS:
                state_in[arc.nextstate] = arc_class
            elif state_in[arc.nextstate] != arc_class:
                raise HmmContractError(
                    f"State {arc.nextstate} has entering arcs of mixed classes")

    for s, tstate in enumerate(state_in):
        if tstate <= 0:
            continue
        self_loop = trans_model.self_loop_of(tstate)
        if self_loop != 0 and _has_self_loop(fst, s, self_loop):
            continue

        forward_cost = -trans_model.get_non_self_loop_log_prob(tstate) * scale
        if forward_cost != 0.0:
            if is_final(fst, s):
                fst.set_final(s, _times(fst.final(s), forward_cost))
            maiter = fst.mutable_arcs(s)
            while not maiter.done():
                arc = maiter.value()
                arc.weight = _times(arc.weight, forward_cost)
                maiter.set_value(arc)
                maiter.next()
        if self_loop != 0:
            loop_cost = -trans_model.get_transition_log_prob(self_loop) * scale
            fst.add_arc(s, Arc(self_loop, 0, cost_to_weight(weight_type, loop_cost), s))


def add_self_loops(trans_model: TransitionModel,
                   disambig_syms: Sequence[int],
                   currently_self_loop_free: bool,
                   use_weights: bool,
                   fst: Fst) -> Fst:
    """Add self-loops to a graph whose input labels are transition-ids.

    The graph is modified in place. The layout follows
    trans_model.uses_reordered_alignments().

    Args:
        trans_model: Transition model
        disambig_syms: Sorted, unique disambiguation symbols that may appear
            on the input side
        currently_self_loop_free: If True, raise HmmContractError on any
            self-loop transition-id already in the graph; if False, states
            that already have their self-loop are left alone
        use_weights: Weight self-loops by their probability and scale the
            other arcs leaving the state by the forward probability; if
            False, self-loops get weight One and nothing is rescaled
        fst: Graph to modify

    Returns:
        The same graph
    """
    if fst.start() < 0:
        return fst
    mapper = TidToTstateMapper(trans_model, disambig_syms, currently_self_loop_free)
    num_states = fst.num_states()
    if trans_model.uses_reordered_alignments():
        _add_self_loops_reorder(trans_model, mapper, use_weights, fst)
    else:
        _add_self_loops_no_reorder(trans_model, mapper, use_weights, fst)
    logger.debug(f"Added self-loops; graph grew from {num_states} to "
                 f"{fst.num_states()} states")
    return fst
