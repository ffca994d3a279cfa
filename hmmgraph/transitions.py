"""Transition model.

Maps transition-ids to (phone, HMM-state, transition-index) and holds the
transition probabilities. Transition-states are the distinct tuples
(phone, hmm_state, pdf) allowed by the tree and topology, numbered from 1
in sorted order. Transition-ids are numbered from 1 as well, consecutively
over the transitions of each transition-state; 0 is reserved for epsilon.
"""

import logging
from typing import List, Tuple

import numpy as np

from .context_dep import ContextDependencyInterface
from .errors import HmmContractError
from .topology import HmmTopology, TopologyEntry

logger = logging.getLogger(__name__)


class TransitionModel:
    """Transition-id bookkeeping and transition probabilities."""

    def __init__(self,
                 ctx_dep: ContextDependencyInterface,
                 topology: HmmTopology,
                 reorder: bool = False):
        """Initialize transition model.

        Args:
            ctx_dep: Decision tree providing the (phone, pdf-class) -> pdf info
            topology: HMM topology
            reorder: If True, alignments and graphs made with this model place
                self-loops after the forward transition of a state
        """
        self.topology = topology
        self.reorder = reorder

        phones = topology.phones
        pdf_info = ctx_dep.get_pdf_info(
            phones, [topology.num_pdf_classes(phone) for phone in phones])

        tuples = set()
        for pdf, pairs in enumerate(pdf_info):
            for phone, pdf_class in pairs:
                entry = topology.topology_for_phone(phone)
                for hmm_state, state in enumerate(entry[:-1]):
                    if state.pdf_class == pdf_class:
                        tuples.add((phone, hmm_state, pdf))
        self._tuples: List[Tuple[int, int, int]] = sorted(tuples)
        self._tuple_to_state = {t: i + 1 for i, t in enumerate(self._tuples)}

        # _state2id[s] is the first transition-id of transition-state s.
        self._state2id = [0]
        self._id2state = [0]
        cur_id = 1
        for tstate, (phone, hmm_state, _) in enumerate(self._tuples, start=1):
            num_transitions = len(topology.topology_for_phone(phone)[hmm_state].transitions)
            self._state2id.append(cur_id)
            self._id2state.extend([tstate] * num_transitions)
            cur_id += num_transitions
        self._state2id.append(cur_id)
        self._num_transition_ids = cur_id - 1

        probs = np.zeros(self._num_transition_ids + 1)
        probs[0] = 1.0
        for tid in range(1, self._num_transition_ids + 1):
            _, prob = self._transition(tid)
            probs[tid] = prob
        with np.errstate(divide='ignore'):
            self.set_log_probs(np.log(probs))

        logger.debug(f"Transition model has {self.num_transition_states} transition-states "
                     f"and {self.num_transition_ids} transition-ids")

    @property
    def num_transition_ids(self) -> int:
        return self._num_transition_ids

    @property
    def num_transition_states(self) -> int:
        return len(self._tuples)

    @property
    def num_pdfs(self) -> int:
        return max((pdf for _, _, pdf in self._tuples), default=-1) + 1

    @property
    def phones(self) -> List[int]:
        return self.topology.phones

    def uses_reordered_alignments(self) -> bool:
        return self.reorder

    def topology_for(self, phone: int) -> TopologyEntry:
        return self.topology.topology_for_phone(phone)

    def set_log_probs(self, log_probs: np.ndarray) -> None:
        """Replace the transition log-probabilities.

        Args:
            log_probs: Array indexed by transition-id, of size
                num_transition_ids + 1 (element 0 is ignored)
        """
        log_probs = np.asarray(log_probs, dtype=np.float64)
        if log_probs.shape != (self._num_transition_ids + 1,):
            raise HmmContractError(
                f"Expected {self._num_transition_ids + 1} log-probs, got {log_probs.shape}")
        self._log_probs = log_probs.copy()
        self._log_probs[0] = 0.0

        self._non_self_loop_log_probs = np.zeros(self.num_transition_states + 1)
        for tstate in range(1, self.num_transition_states + 1):
            self_loop = self.self_loop_of(tstate)
            if self_loop != 0:
                with np.errstate(divide='ignore'):
                    self._non_self_loop_log_probs[tstate] = np.log1p(
                        -np.exp(self._log_probs[self_loop]))

    def is_valid_transition_id(self, trans_id: int) -> bool:
        return 1 <= trans_id <= self._num_transition_ids

    def _check_transition_id(self, trans_id: int) -> None:
        if not self.is_valid_transition_id(trans_id):
            raise HmmContractError(
                f"Transition-id {trans_id} is out of range "
                f"[1, {self._num_transition_ids}]")

    def _check_transition_state(self, tstate: int) -> None:
        if not 1 <= tstate <= self.num_transition_states:
            raise HmmContractError(f"Transition-state {tstate} is out of range")

    def _transition(self, trans_id: int) -> Tuple[int, float]:
        """(destination HMM-state, topology probability) of a transition-id."""
        tstate = self._id2state[trans_id]
        phone, hmm_state, _ = self._tuples[tstate - 1]
        index = trans_id - self._state2id[tstate]
        return self.topology.topology_for_phone(phone)[hmm_state].transitions[index]

    def tuple_to_transition_state(self, phone: int, hmm_state: int, pdf: int) -> int:
        try:
            return self._tuple_to_state[(phone, hmm_state, pdf)]
        except KeyError:
            raise HmmContractError(
                f"No transition-state for phone {phone}, HMM-state {hmm_state}, "
                f"pdf {pdf}; tree and transition model do not match") from None

    def pair_to_transition_id(self, tstate: int, trans_index: int) -> int:
        self._check_transition_state(tstate)
        trans_id = self._state2id[tstate] + trans_index
        if trans_index < 0 or trans_id >= self._state2id[tstate + 1]:
            raise HmmContractError(
                f"Transition-index {trans_index} out of range for transition-state {tstate}")
        return trans_id

    def transition_id_to_transition_state(self, trans_id: int) -> int:
        self._check_transition_id(trans_id)
        return self._id2state[trans_id]

    def transition_id_to_transition_index(self, trans_id: int) -> int:
        return trans_id - self._state2id[self.transition_id_to_transition_state(trans_id)]

    def transition_state_to_phone(self, tstate: int) -> int:
        self._check_transition_state(tstate)
        return self._tuples[tstate - 1][0]

    def transition_state_to_hmm_state(self, tstate: int) -> int:
        self._check_transition_state(tstate)
        return self._tuples[tstate - 1][1]

    def transition_state_to_pdf(self, tstate: int) -> int:
        self._check_transition_state(tstate)
        return self._tuples[tstate - 1][2]

    def transition_id_to_phone(self, trans_id: int) -> int:
        return self._tuples[self.transition_id_to_transition_state(trans_id) - 1][0]

    def transition_id_to_hmm_state(self, trans_id: int) -> int:
        return self._tuples[self.transition_id_to_transition_state(trans_id) - 1][1]

    def transition_id_to_pdf(self, trans_id: int) -> int:
        return self._tuples[self.transition_id_to_transition_state(trans_id) - 1][2]

    def transition_id_to_destination(self, trans_id: int) -> int:
        """HMM-state entered by a transition-id."""
        self._check_transition_id(trans_id)
        return self._transition(trans_id)[0]

    def is_self_loop(self, trans_id: int) -> bool:
        return self.transition_id_to_destination(trans_id) == self.transition_id_to_hmm_state(trans_id)

    def is_final(self, trans_id: int) -> bool:
        """True if the transition-id enters the final state of its phone."""
        entry = self.topology.topology_for_phone(self.transition_id_to_phone(trans_id))
        return self.transition_id_to_destination(trans_id) == len(entry) - 1

    def self_loop_of(self, tstate: int) -> int:
        """Self-loop transition-id of a transition-state, 0 if it has none."""
        self._check_transition_state(tstate)
        phone, hmm_state, _ = self._tuples[tstate - 1]
        transitions = self.topology.topology_for_phone(phone)[hmm_state].transitions
        for trans_index, (dst, _) in enumerate(transitions):
            if dst == hmm_state:
                return self._state2id[tstate] + trans_index
        return 0

    def get_transition_log_prob(self, trans_id: int) -> float:
        self._check_transition_id(trans_id)
        return float(self._log_probs[trans_id])

    def get_transition_prob(self, trans_id: int) -> float:
        return float(np.exp(self.get_transition_log_prob(trans_id)))

    def get_non_self_loop_log_prob(self, tstate: int) -> float:
        """Log of the probability of leaving a transition-state's HMM-state."""
        self._check_transition_state(tstate)
        return float(self._non_self_loop_log_probs[tstate])

    def get_transition_log_prob_ignoring_self_loops(self, trans_id: int) -> float:
        """Log-probability of a transition renormalized over the non-self-loop ones."""
        if self.is_self_loop(trans_id):
            raise HmmContractError(f"Transition-id {trans_id} is a self-loop")
        tstate = self.transition_id_to_transition_state(trans_id)
        return self.get_transition_log_prob(trans_id) - self.get_non_self_loop_log_prob(tstate)
