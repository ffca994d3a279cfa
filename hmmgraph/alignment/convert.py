"""Convert alignments between transition models.

This module implements:
1. Random alignments: uniform over all paths of a given length through a
   phone's HMM
2. Alignment conversion to a new transition model, tree, topology or frame
   rate, keeping phone boundaries
3. Batch conversion of a corpus of alignments
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
from tqdm import tqdm

from ..context_dep import ContextDependencyInterface
from ..errors import HmmContractError
from ..topology import HmmTopology
from ..transitions import TransitionModel
from ..wfst.build_h import get_hmm_as_fsa_simple, get_pdf_sequence, is_final
from .split import change_reordering_of_alignment, is_reordered, split_to_phones

logger = logging.getLogger(__name__)


def _path_counts(fst, length: int) -> np.ndarray:
    """Relative numbers of paths to a final state.

    Row t holds, for each state, a number proportional to the count of paths
    of exactly t arcs from that state to a final state. Rows are normalized
    to avoid overflow, which keeps ratios within a row intact.
    """
    num_states = fst.num_states()
    successors = [[arc.nextstate for arc in fst.arcs(s)] for s in range(num_states)]
    counts = np.zeros((length + 1, num_states))
    for s in range(num_states):
        if is_final(fst, s):
            counts[0, s] = 1.0
    for t in range(1, length + 1):
        for s in range(num_states):
            counts[t, s] = counts[t - 1, successors[s]].sum()
        total = counts[t].sum()
        if total > 0:
            counts[t] /= total
    return counts


def _sample_path(fst, length: int, rng: np.random.Generator) -> Optional[List[int]]:
    if fst.start() < 0:
        return None
    counts = _path_counts(fst, length)
    state = fst.start()
    if counts[length, state] == 0:
        return None

    path = []
    for remaining in range(length, 0, -1):
        arcs = list(fst.arcs(state))
        weights = np.array([counts[remaining - 1, arc.nextstate] for arc in arcs])
        arc = arcs[rng.choice(len(arcs), p=weights / weights.sum())]
        path.append(arc.ilabel)
        state = arc.nextstate
    return path


def get_random_alignment_for_phone(ctx_dep: ContextDependencyInterface,
                                   trans_model: TransitionModel,
                                   phone_window: Sequence[int],
                                   length: int,
                                   rng: Optional[np.random.Generator] = None) -> List[int]:
    """Draw an alignment of one phone uniformly among all valid ones.

    Args:
        ctx_dep: Decision tree
        trans_model: Transition model
        phone_window: Phone window of the tree's context width
        length: Number of frames
        rng: Random generator

    Returns:
        Non-reordered alignment of exactly `length` transition-ids

    Raises:
        HmmContractError: If the window does not fit the tree or the phone's
            HMM has no path of that length
    """
    rng = rng if rng is not None else np.random.default_rng()
    phone, _ = get_pdf_sequence(phone_window, ctx_dep, trans_model)
    min_length = trans_model.topology.min_length(phone)
    if length < min_length:
        raise HmmContractError(
            f"Requested alignment of {length} frames for phone {phone}, "
            f"which needs at least {min_length}")

    fst = get_hmm_as_fsa_simple(phone_window, ctx_dep, trans_model, prob_scale=0.0)
    path = _sample_path(fst, length, rng)
    if path is None:
        raise HmmContractError(f"Phone {phone} has no alignment of exactly {length} frames")
    return path


def compute_new_phone_lengths(topology: HmmTopology,
                              mapped_phones: Sequence[int],
                              old_lengths: Sequence[int],
                              conversion_shift: int,
                              subsample_factor: int) -> Optional[List[int]]:
    """Compute phone lengths at a reduced frame rate.

    Phone boundaries are moved to the nearest subsampled frame, so the new
    lengths sum to (sum(old_lengths) + conversion_shift) // subsample_factor.

    Args:
        topology: New topology
        mapped_phones: Phone of each segment
        old_lengths: Frame count of each segment
        conversion_shift: Offset in [0, subsample_factor)
        subsample_factor: Frame-rate reduction

    Returns:
        New lengths, or None if a phone gets fewer frames than its topology
        needs
    """
    new_lengths = []
    elapsed = 0
    for phone, old_length in zip(mapped_phones, old_lengths):
        begin = (elapsed + conversion_shift) // subsample_factor
        elapsed += old_length
        end = (elapsed + conversion_shift) // subsample_factor
        new_length = end - begin
        if new_length < topology.min_length(phone):
            logger.debug(f"Phone {phone} gets {new_length} frames, "
                         f"needs {topology.min_length(phone)}")
            return None
        new_lengths.append(new_length)
    return new_lengths


class _PhoneConverter:
    """Converts the segments of one alignment, one phone at a time."""

    def __init__(self, old_tm: TransitionModel, new_tm: TransitionModel,
                 new_ctx_dep: ContextDependencyInterface, rng: np.random.Generator):
        self.old_tm = old_tm
        self.new_tm = new_tm
        self.new_ctx_dep = new_ctx_dep
        self.rng = rng
        self.warned_topology = False

    def convert(self, old_segment: Sequence[int], new_window: Sequence[int],
                new_length: int, old_is_reordered: bool,
                new_is_reordered: bool) -> Optional[List[int]]:
        old_phone = self.old_tm.transition_id_to_phone(old_segment[0])
        new_phone = new_window[self.new_ctx_dep.central_position]
        old_entry = self.old_tm.topology.topology_for_phone(old_phone)
        new_entry = self.new_tm.topology.topology_for_phone(new_phone)

        topology_mismatch = old_entry != new_entry
        if topology_mismatch and not self.warned_topology:
            self.warned_topology = True
            logger.warning("Topology mismatch detected; generating new alignments "
                           "for the mismatched phones")

        if topology_mismatch or new_length != len(old_segment):
            fst = get_hmm_as_fsa_simple(new_window, self.new_ctx_dep, self.new_tm,
                                        prob_scale=0.0)
            segment = _sample_path(fst, new_length, self.rng)
            if segment is None:
                logger.warning(f"Phone {new_phone} has no alignment of {new_length} frames")
                return None
            if new_is_reordered:
                segment = change_reordering_of_alignment(self.new_tm, segment, reordered=False)
            return segment

        _, pdfs = get_pdf_sequence(new_window, self.new_ctx_dep, self.new_tm)
        segment = []
        for old_id in old_segment:
            hmm_state = self.old_tm.transition_id_to_hmm_state(old_id)
            trans_index = self.old_tm.transition_id_to_transition_index(old_id)
            pdf = pdfs[new_entry[hmm_state].pdf_class]
            tstate = self.new_tm.tuple_to_transition_state(new_phone, hmm_state, pdf)
            segment.append(self.new_tm.pair_to_transition_id(tstate, trans_index))

        if new_is_reordered != old_is_reordered:
            segment = change_reordering_of_alignment(
                self.new_tm, segment, reordered=old_is_reordered)
        return segment


def _map_phone(phone: int, phone_map: Optional[Mapping[int, int]],
               topology: HmmTopology) -> Optional[int]:
    if phone_map is not None:
        mapped = phone_map.get(phone, -1)
        if mapped == -1:
            logger.warning(f"Could not map phone {phone}")
            return None
        phone = mapped
    if phone not in topology:
        logger.warning(f"Phone {phone} is not in the new topology")
        return None
    return phone


def _convert_alignment_internal(converter: _PhoneConverter,
                                old_alignment: Sequence[int],
                                conversion_shift: int,
                                subsample_factor: int,
                                phone_map: Optional[Mapping[int, int]]) -> Optional[List[int]]:
    old_tm, new_tm = converter.old_tm, converter.new_tm
    old_is_reordered = is_reordered(old_tm, old_alignment)
    new_is_reordered = new_tm.uses_reordered_alignments()

    ok, old_split = split_to_phones(old_tm, old_alignment)
    if not ok:
        logger.warning("Alignment could not be split into phones")
        return None

    mapped_phones = []
    for segment in old_split:
        phone = _map_phone(old_tm.transition_id_to_phone(segment[0]), phone_map,
                           new_tm.topology)
        if phone is None:
            return None
        mapped_phones.append(phone)

    old_lengths = [len(segment) for segment in old_split]
    if subsample_factor == 1 and old_tm.topology == new_tm.topology:
        new_lengths = old_lengths
    else:
        new_lengths = compute_new_phone_lengths(
            new_tm.topology, mapped_phones, old_lengths, conversion_shift, subsample_factor)
        if new_lengths is None:
            logger.warning("Failed to produce suitable phone lengths")
            return None

    width = converter.new_ctx_dep.context_width
    central = converter.new_ctx_dep.central_position
    num_phones = len(mapped_phones)
    new_alignment = []
    for i in range(num_phones):
        window = []
        for j in range(i - central, i - central + width):
            window.append(mapped_phones[j] if 0 <= j < num_phones else 0)
        segment = converter.convert(old_split[i], window, new_lengths[i],
                                    old_is_reordered, new_is_reordered)
        if segment is None:
            return None
        new_alignment.extend(segment)
    return new_alignment


def convert_alignment(old_tm: TransitionModel,
                      new_tm: TransitionModel,
                      new_ctx_dep: ContextDependencyInterface,
                      old_alignment: Sequence[int],
                      subsample_factor: int = 1,
                      repeat_frames: bool = False,
                      phone_map: Optional[Mapping[int, int]] = None,
                      rng: Optional[np.random.Generator] = None) -> Optional[List[int]]:
    """Convert an alignment to a new transition model.

    Each phone keeps its frames when it can: if the phone's topology and
    length are unchanged the transition-ids are transferred state by state,
    otherwise a random alignment of the right length is drawn for it.

    Args:
        old_tm: Transition model of `old_alignment`
        new_tm: Target transition model; its layout decides whether the
            result is reordered
        new_ctx_dep: Decision tree of the target model
        old_alignment: Sequence of transition-ids
        subsample_factor: Frame-rate reduction of the target model; the
            result has len(old_alignment) // subsample_factor frames
        repeat_frames: With subsample_factor > 1, keep the original frame
            rate by interleaving the conversions at every shift
        phone_map: Optional mapping from old to new phones; -1 or a missing
            key means unmappable
        rng: Random generator for the phones that need random alignments

    Returns:
        New alignment, or None if the alignment could not be converted
    """
    if subsample_factor < 1:
        raise HmmContractError(f"Subsample factor must be at least 1, got {subsample_factor}")
    rng = rng if rng is not None else np.random.default_rng()
    converter = _PhoneConverter(old_tm, new_tm, new_ctx_dep, rng)

    if not repeat_frames or subsample_factor == 1:
        return _convert_alignment_internal(
            converter, old_alignment, 0, subsample_factor, phone_map)

    shifted = {}
    for shift in range(subsample_factor - 1, -1, -1):
        alignment = _convert_alignment_internal(
            converter, old_alignment, shift, subsample_factor, phone_map)
        if alignment is None:
            return None
        shifted[shift] = alignment

    new_alignment = []
    max_length = (len(old_alignment) + subsample_factor - 1) // subsample_factor
    for i in range(max_length):
        for shift in range(subsample_factor - 1, -1, -1):
            if i < len(shifted[shift]):
                new_alignment.append(shifted[shift][i])
    return new_alignment


def convert_alignments(old_tm: TransitionModel,
                       new_tm: TransitionModel,
                       new_ctx_dep: ContextDependencyInterface,
                       alignments: Mapping[str, Sequence[int]],
                       subsample_factor: int = 1,
                       repeat_frames: bool = False,
                       phone_map: Optional[Mapping[int, int]] = None,
                       rng: Optional[np.random.Generator] = None,
                       show_progress: bool = True) -> Dict[str, List[int]]:
    """Convert a corpus of alignments, skipping the ones that fail.

    Args:
        old_tm: Transition model of the alignments
        new_tm: Target transition model
        new_ctx_dep: Decision tree of the target model
        alignments: Mapping from utterance id to alignment
        subsample_factor: Frame-rate reduction of the target model
        repeat_frames: Interleave conversions at every shift
        phone_map: Optional mapping from old to new phones
        rng: Random generator shared by all conversions
        show_progress: Show a progress bar

    Returns:
        Mapping from utterance id to converted alignment, for the utterances
        that converted
    """
    rng = rng if rng is not None else np.random.default_rng()
    converted = {}
    failed = []
    for utt_id, alignment in tqdm(alignments.items(), desc="Converting alignments",
                                  disable=not show_progress):
        new_alignment = convert_alignment(old_tm, new_tm, new_ctx_dep, alignment,
                                          subsample_factor, repeat_frames, phone_map, rng)
        if new_alignment is None:
            logger.warning(f"Could not convert alignment for {utt_id}")
            failed.append(utt_id)
        else:
            converted[utt_id] = new_alignment

    logger.info(f"Converted {len(converted)} alignments, {len(failed)} failed")
    return converted
