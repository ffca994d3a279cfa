"""Attach transition probabilities to graphs with transition-id labels."""

import logging
from bisect import bisect_left
from typing import Sequence

from pynini import Fst

from ..errors import HmmContractError
from ..lattice import Lattice, LatticeArc, LatticeWeight
from ..transitions import TransitionModel
from .build_h import NONTERM_BIG_NUMBER, cost_to_weight

logger = logging.getLogger(__name__)


def get_scaled_transition_log_prob(trans_model: TransitionModel,
                                   trans_id: int,
                                   transition_scale: float = 1.0,
                                   self_loop_scale: float = 1.0) -> float:
    """Log-probability of a transition-id with separate self-loop scaling.

    With different scales, the probability of a forward transition is split
    into the probability of leaving the state (scaled like self-loops) and
    the renormalized probability of the transition itself.
    """
    if transition_scale == self_loop_scale:
        return trans_model.get_transition_log_prob(trans_id) * transition_scale
    if trans_model.is_self_loop(trans_id):
        return self_loop_scale * trans_model.get_transition_log_prob(trans_id)
    tstate = trans_model.transition_id_to_transition_state(trans_id)
    return (self_loop_scale * trans_model.get_non_self_loop_log_prob(tstate)
            + transition_scale * trans_model.get_transition_log_prob_ignoring_self_loops(trans_id))


def _is_declared(disambig_syms: Sequence[int], label: int) -> bool:
    i = bisect_left(disambig_syms, label)
    return i < len(disambig_syms) and disambig_syms[i] == label


def add_transition_probs(trans_model: TransitionModel,
                         disambig_syms: Sequence[int],
                         fst: Fst,
                         transition_scale: float = 1.0,
                         self_loop_scale: float = 1.0) -> Fst:
    """Multiply transition probabilities into the arcs of a graph, in place.

    Arcs with a transition-id input label get the transition's probability
    multiplied into their weight; on a structural graph whose weights are
    all One this sets the weight to the probability. Epsilon,
    disambiguation and grammar-decoding arcs are left as they are.

    Args:
        trans_model: Transition model
        disambig_syms: Sorted disambiguation symbols allowed on the input side
        fst: Graph to modify
        transition_scale: Scale on forward transition log-probabilities
        self_loop_scale: Scale on self-loop log-probabilities

    Returns:
        The same graph

    Raises:
        HmmContractError: On an input label that is neither a transition-id
            nor a declared disambiguation symbol
    """
    if fst.start() < 0:
        return fst
    num_tids = trans_model.num_transition_ids
    for s in range(fst.num_states()):
        maiter = fst.mutable_arcs(s)
        while not maiter.done():
            arc = maiter.value()
            label = arc.ilabel
            if 1 <= label <= num_tids:
                log_prob = get_scaled_transition_log_prob(
                    trans_model, label, transition_scale, self_loop_scale)
                arc.weight = cost_to_weight(arc.weight.type(), float(arc.weight) - log_prob)
                maiter.set_value(arc)
            elif (label != 0 and label < NONTERM_BIG_NUMBER
                  and not _is_declared(disambig_syms, label)):
                raise HmmContractError(f"Invalid symbol {label} on graph input side")
            maiter.next()
    return fst


def add_transition_probs_to_lattice(trans_model: TransitionModel,
                                    lat: Lattice,
                                    transition_scale: float = 1.0,
                                    self_loop_scale: float = 1.0) -> Lattice:
    """Add transition costs to the graph cost of a lattice, in place.

    Acoustic costs are not touched.

    Args:
        trans_model: Transition model
        lat: Lattice whose input labels are transition-ids
        transition_scale: Scale on forward transition log-probabilities
        self_loop_scale: Scale on self-loop log-probabilities

    Returns:
        The same lattice
    """
    if lat.start is None:
        return lat
    num_tids = trans_model.num_transition_ids
    for s in lat.states():
        arcs = lat.arcs(s)
        for i, arc in enumerate(arcs):
            if 1 <= arc.ilabel <= num_tids:
                log_prob = get_scaled_transition_log_prob(
                    trans_model, arc.ilabel, transition_scale, self_loop_scale)
                weight = arc.weight.times(LatticeWeight(-log_prob, 0.0))
                arcs[i] = LatticeArc(arc.ilabel, arc.olabel, weight, arc.nextstate)
    return lat


def convert_transition_ids_to_pdfs(trans_model: TransitionModel,
                                   disambig_syms: Sequence[int],
                                   fst: Fst) -> Fst:
    """Relabel transition-ids as pdf-ids. Not supported."""
    raise NotImplementedError("Converting transition-ids to pdf-ids is not supported")
