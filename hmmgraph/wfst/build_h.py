"""Build phone acceptors and the H transducer.

This module implements:
1. Phone acceptors: one acceptor over transition-ids per phone in context
2. H transducer: transition-ids (plus disambiguation symbols) to ilabels,
   i.e. indexes into the ilabel_info catalog of phones-in-context
3. Ilabel mapping: merges phones-in-context whose pdf-ids are identical
4. Pdf to transition-id transducer

Weights are tropical costs, i.e. negated natural-log probabilities.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from pynini import Arc, Fst, Weight

from ..context_dep import ContextDependencyInterface
from ..errors import HmmContractError
from ..transitions import TransitionModel

logger = logging.getLogger(__name__)

# Labels at or above this are grammar-decoding symbols and are handled like
# disambiguation symbols.
NONTERM_BIG_NUMBER = 10000000
NONTERM_MEDIUM_NUMBER = 1000

HmmCacheKey = Tuple[int, Tuple[int, ...]]


def cost_to_weight(weight_type: str, cost: float) -> Weight:
    """Convert a cost to a Weight, mapping infinite costs to Zero."""
    if math.isinf(cost) and cost > 0:
        return Weight.zero(weight_type)
    return Weight(weight_type, cost)


def is_final(fst: Fst, state: int) -> bool:
    return not math.isinf(float(fst.final(state)))


@dataclass
class HTransducerConfig:
    """Options for get_h_transducer().

    Attributes:
        nonterm_phones_offset: Integer id of #nonterm_bos in phones.txt, or -1
            when no grammar decoding is done
        include_self_loops: Include self-loops in the phone acceptors
    """
    nonterm_phones_offset: int = -1
    include_self_loops: bool = False

    @classmethod
    def from_dict(cls, config: Dict) -> "HTransducerConfig":
        """Create config from a dictionary such as a parsed JSON file.

        Args:
            config: Either the options themselves or a dictionary with an
                'h_transducer' section

        Returns:
            H transducer configuration
        """
        options = config.get('h_transducer', config)
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown H transducer options: {sorted(unknown)}")
        return cls(**options)


class HmmCache:
    """Lookaside buffer of phone acceptors.

    Keys are (central phone, pdf-ids of the phone's pdf-classes). Acceptors
    stored here are shared with every caller and must not be modified. The
    cache is not synchronized; threads sharing one must serialize calls to
    get_hmm_as_fsa() themselves.
    """

    def __init__(self, include_self_loops: bool = False):
        """Initialize cache.

        Args:
            include_self_loops: Whether the cached acceptors have self-loops
        """
        self.include_self_loops = include_self_loops
        self._fsts: Dict[HmmCacheKey, Fst] = {}

    def __len__(self) -> int:
        return len(self._fsts)

    def __contains__(self, key: HmmCacheKey) -> bool:
        return key in self._fsts

    def get(self, key: HmmCacheKey) -> Optional[Fst]:
        return self._fsts.get(key)

    def insert(self, key: HmmCacheKey, fst: Fst) -> Fst:
        """Publish an acceptor; returns the one already stored if any."""
        return self._fsts.setdefault(key, fst)


def get_pdf_sequence(context_window: Sequence[int],
                     ctx_dep: ContextDependencyInterface,
                     trans_model: TransitionModel) -> HmmCacheKey:
    """Resolve the pdf-ids of the central phone of a context window.

    Args:
        context_window: Phone window of the tree's context width
        ctx_dep: Decision tree
        trans_model: Transition model

    Returns:
        Tuple of (central phone, tuple of pdf-ids indexed by pdf-class)

    Raises:
        HmmContractError: If the window has the wrong width or the tree
            cannot resolve it
    """
    window = tuple(context_window)
    if len(window) != ctx_dep.context_width:
        raise HmmContractError(
            f"Context window {list(window)} does not have width {ctx_dep.context_width}")
    phone = window[ctx_dep.central_position]
    num_pdf_classes = trans_model.topology.num_pdf_classes(phone)

    pdfs = []
    for pdf_class in range(num_pdf_classes):
        pdf = ctx_dep.compute(window, pdf_class)
        if pdf is None:
            raise HmmContractError(
                f"Tree did not succeed in converting phone window {list(window)}")
        pdfs.append(pdf)
    return phone, tuple(pdfs)


def get_hmm_as_fsa(context_window: Sequence[int],
                   ctx_dep: ContextDependencyInterface,
                   trans_model: TransitionModel,
                   include_self_loops: bool = False,
                   cache: Optional[HmmCache] = None) -> Fst:
    """Build the acceptor of one phone in context.

    Labels are transition-ids (ilabel == olabel). Without self-loops, the
    probability of every other transition is renormalized so that it sums
    to one over the transitions that are kept; add_self_loops() restores
    the self-loops later.

    Args:
        context_window: Phone window of the tree's context width
        ctx_dep: Decision tree
        trans_model: Transition model
        include_self_loops: Keep self-loop arcs with their own probabilities
        cache: Optional lookaside buffer; a cached acceptor is returned as is

    Returns:
        Trimmed acceptor; shared with the cache when one is given
    """
    key = get_pdf_sequence(context_window, ctx_dep, trans_model)
    if cache is not None:
        if cache.include_self_loops != include_self_loops:
            raise HmmContractError(
                "Cache holds acceptors built with include_self_loops="
                f"{cache.include_self_loops}")
        cached = cache.get(key)
        if cached is not None:
            return cached

    phone, pdfs = key
    entry = trans_model.topology.topology_for_phone(phone)

    fst = Fst()
    weight_type = fst.weight_type()
    states = [fst.add_state() for _ in entry]
    fst.set_start(states[0])
    fst.set_final(states[-1])

    for hmm_state, state in enumerate(entry[:-1]):
        tstate = trans_model.tuple_to_transition_state(phone, hmm_state, pdfs[state.pdf_class])
        for trans_index, (dst, _) in enumerate(state.transitions):
            trans_id = trans_model.pair_to_transition_id(tstate, trans_index)
            if dst == hmm_state:
                if not include_self_loops:
                    continue
                log_prob = trans_model.get_transition_log_prob(trans_id)
            elif include_self_loops:
                log_prob = trans_model.get_transition_log_prob(trans_id)
            else:
                log_prob = trans_model.get_transition_log_prob_ignoring_self_loops(trans_id)
            fst.add_arc(states[hmm_state], Arc(
                trans_id, trans_id, cost_to_weight(weight_type, -log_prob), states[dst]))

    fst.connect()

    if cache is not None:
        fst = cache.insert(key, fst)
    return fst


def get_hmm_as_fsa_simple(context_window: Sequence[int],
                          ctx_dep: ContextDependencyInterface,
                          trans_model: TransitionModel,
                          prob_scale: float = 1.0) -> Fst:
    """Build the acceptor of one phone in context, self-loops included.

    Args:
        context_window: Phone window of the tree's context width
        ctx_dep: Decision tree
        trans_model: Transition model
        prob_scale: Scale on the log-probabilities; 0 gives all arcs weight One

    Returns:
        Trimmed acceptor with one state per HMM-state
    """
    phone, pdfs = get_pdf_sequence(context_window, ctx_dep, trans_model)
    entry = trans_model.topology.topology_for_phone(phone)

    fst = Fst()
    weight_type = fst.weight_type()
    states = [fst.add_state() for _ in entry]
    fst.set_start(states[0])
    fst.set_final(states[-1])

    for hmm_state, state in enumerate(entry[:-1]):
        tstate = trans_model.tuple_to_transition_state(phone, hmm_state, pdfs[state.pdf_class])
        for trans_index, (dst, _) in enumerate(state.transitions):
            trans_id = trans_model.pair_to_transition_id(tstate, trans_index)
            if prob_scale == 0.0:
                weight = Weight.one(weight_type)
            else:
                cost = -prob_scale * trans_model.get_transition_log_prob(trans_id)
                weight = cost_to_weight(weight_type, cost)
            fst.add_arc(states[hmm_state], Arc(trans_id, trans_id, weight, states[dst]))

    fst.connect()
    return fst


def get_encoding_multiple(nonterm_phones_offset: int) -> int:
    """Multiple used to encode (nonterminal, left-context phone) pairs."""
    return NONTERM_MEDIUM_NUMBER * (
        (nonterm_phones_offset + NONTERM_MEDIUM_NUMBER) // NONTERM_MEDIUM_NUMBER)


def _nonterminal_symbol(entry: Sequence[int], nonterm_phones_offset: int) -> int:
    if nonterm_phones_offset < 0:
        raise HmmContractError(
            "ilabel_info seems to be for a grammar FST; "
            "nonterm_phones_offset must be set")
    nonterminal, left_context_phone = -entry[0], entry[1]
    if (nonterminal <= nonterm_phones_offset or left_context_phone <= 0
            or left_context_phone > nonterm_phones_offset):
        raise HmmContractError(
            f"Could not interpret ilabel_info entry {list(entry)} with "
            f"nonterm_phones_offset={nonterm_phones_offset}")
    return (NONTERM_BIG_NUMBER
            + nonterminal * get_encoding_multiple(nonterm_phones_offset)
            + left_context_phone)


def _make_trivial_acceptor(label: int) -> Fst:
    fst = Fst()
    start = fst.add_state()
    end = fst.add_state()
    fst.set_start(start)
    fst.set_final(end)
    fst.add_arc(start, Arc(label, label, Weight.one(fst.weight_type()), end))
    return fst


def _is_initial_acyclic(fst: Fst) -> bool:
    start = fst.start()
    return all(arc.nextstate != start
               for s in fst.states() for arc in fst.arcs(s))


def _make_loop_fst(fsts: List[Optional[Fst]]) -> Fst:
    """Closure of the union of acceptors, with the list index as output.

    The output label of acceptor i is put on the first arc of each of its
    paths. An acceptor object that appears several times in the list is only
    copied once.
    """
    ans = Fst()
    weight_type = ans.weight_type()
    one = Weight.one(weight_type)
    loop_state = ans.add_state()
    ans.set_start(loop_state)
    ans.set_final(loop_state)

    # id(fst) -> (ilabel, weight, nextstate) of the arc leaving the loop state
    first_arcs = {}

    for label, fst in enumerate(fsts):
        if fst is None:
            continue
        if id(fst) in first_arcs:
            ilabel, weight, nextstate = first_arcs[id(fst)]
            ans.add_arc(loop_state, Arc(ilabel, label, weight, nextstate))
            continue

        start = fst.start()
        if start < 0:
            continue  # Empty fst.

        share_start = (_is_initial_acyclic(fst)
                       and fst.num_arcs(start) == 1
                       and not is_final(fst, start))

        state_map = {}
        for s in fst.states():
            if s == start and share_start:
                state_map[s] = loop_state
            else:
                state_map[s] = ans.add_state()

        if not share_start:
            first_arcs[id(fst)] = (0, one, state_map[start])
            ans.add_arc(loop_state, Arc(0, label, one, state_map[start]))

        for s in fst.states():
            for arc in fst.arcs(s):
                olabel = label if (s == start and share_start) else 0
                nextstate = state_map[arc.nextstate]
                ans.add_arc(state_map[s], Arc(arc.ilabel, olabel, arc.weight, nextstate))
                if s == start and share_start:
                    first_arcs[id(fst)] = (arc.ilabel, arc.weight, nextstate)
            if is_final(fst, s):
                ans.add_arc(state_map[s], Arc(0, 0, fst.final(s), loop_state))

    return ans


def _is_special_ilabel(entry: Sequence[int]) -> bool:
    # Disambiguation symbol, or (nonterminal, left-context phone) pair.
    return ((len(entry) == 1 and entry[0] <= 0)
            or (len(entry) == 2 and entry[0] < 0))


def get_h_transducer(ilabel_info: Sequence[Sequence[int]],
                     ctx_dep: ContextDependencyInterface,
                     trans_model: TransitionModel,
                     config: Optional[HTransducerConfig] = None) -> Tuple[Fst, List[int]]:
    """Build the H transducer.

    The input side has transition-ids and disambiguation symbols, the output
    side has indexes into ilabel_info. Self-loops are not included unless the
    config asks for them; see add_self_loops().

    Args:
        ilabel_info: Catalog of phone windows; entry 0 must be empty. Entries
            [d] with d <= 0 are disambiguation symbols and entries
            [-nonterminal, left_context_phone] are grammar-decoding symbols
        ctx_dep: Decision tree
        trans_model: Transition model
        config: H transducer options

    Returns:
        Tuple of (H transducer, sorted disambiguation symbols on its input)
    """
    config = config or HTransducerConfig()
    if not ilabel_info or len(ilabel_info[0]) != 0:
        raise HmmContractError("ilabel_info[0] must be empty (epsilon)")

    cache = HmmCache(include_self_loops=config.include_self_loops)
    fsts: List[Optional[Fst]] = [None] * len(ilabel_info)
    disambig_syms_left = []
    # First disambiguation symbol we can have on the input side.
    next_disambig_sym = trans_model.num_transition_ids + 1

    for j in range(1, len(ilabel_info)):
        entry = ilabel_info[j]
        if not entry:
            raise HmmContractError(f"ilabel_info[{j}] is empty")
        if entry[0] < 0 or (entry[0] == 0 and len(entry) == 1):
            if len(entry) == 1:
                disambig_syms_left.append(next_disambig_sym)
                fsts[j] = _make_trivial_acceptor(next_disambig_sym)
                next_disambig_sym += 1
            elif len(entry) == 2:
                symbol = _nonterminal_symbol(entry, config.nonterm_phones_offset)
                fsts[j] = _make_trivial_acceptor(symbol)
            else:
                raise HmmContractError(f"Could not decode ilabel_info[{j}] = {list(entry)}")
        else:
            fsts[j] = get_hmm_as_fsa(entry, ctx_dep, trans_model,
                                     config.include_self_loops, cache)

    h_fst = _make_loop_fst(fsts)
    disambig_syms_left = sorted(set(disambig_syms_left))

    logger.info(f"H transducer: {len(ilabel_info)} ilabels, {len(cache)} distinct phone "
                f"acceptors, {h_fst.num_states()} states")
    return h_fst, disambig_syms_left


class IlabelMapping(NamedTuple):
    """Mapping between an ilabel_info catalog and its reduced form.

    Attributes:
        old_to_new: New ilabel of every old ilabel
        new_to_old: Representative old ilabel of every new ilabel
    """
    old_to_new: List[int]
    new_to_old: List[int]

    def apply(self, ilabel_info: Sequence[Sequence[int]]) -> List[Tuple[int, ...]]:
        """Build the reduced catalog from the old one."""
        return [tuple(ilabel_info[old]) for old in self.new_to_old]


def get_ilabel_mapping(ilabel_info_old: Sequence[Sequence[int]],
                       ctx_dep: ContextDependencyInterface,
                       trans_model: TransitionModel) -> IlabelMapping:
    """Group phones-in-context that have the same central phone and pdf-ids.

    All members of a group give identical phone acceptors, so the group can
    be represented by any one of them; the first one seen is used.
    Disambiguation and grammar-decoding entries are never merged.

    Args:
        ilabel_info_old: Original catalog of phone windows
        ctx_dep: Decision tree
        trans_model: Transition model

    Returns:
        Mapping between old and new ilabels
    """
    first_seen: Dict[HmmCacheKey, int] = {}
    old_to_old = []
    for i, entry in enumerate(ilabel_info_old):
        if i == 0 or _is_special_ilabel(entry):
            old_to_old.append(i)
            continue
        key = get_pdf_sequence(entry, ctx_dep, trans_model)
        old_to_old.append(first_seen.setdefault(key, i))

    new_to_old = [i for i, rep in enumerate(old_to_old) if rep == i]
    new_index = {old: new for new, old in enumerate(new_to_old)}
    old_to_new = [new_index[rep] for rep in old_to_old]

    logger.info(f"Ilabel mapping: {len(ilabel_info_old)} ilabels reduced to {len(new_to_old)}")
    return IlabelMapping(old_to_new, new_to_old)


def get_pdf_to_transition_id_transducer(trans_model: TransitionModel) -> Fst:
    """One-state transducer from pdf-id plus one (input) to transition-id."""
    fst = Fst()
    one = Weight.one(fst.weight_type())
    state = fst.add_state()
    fst.set_start(state)
    fst.set_final(state)
    for trans_id in range(1, trans_model.num_transition_ids + 1):
        pdf = trans_model.transition_id_to_pdf(trans_id)
        fst.add_arc(state, Arc(pdf + 1, trans_id, one, state))
    return fst
