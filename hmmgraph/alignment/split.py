"""Split transition-id alignments into phones.

An alignment has one transition-id per frame. In the non-reordered layout
the self-loops of an HMM-state come before its forward transition; in the
reordered layout they come after it. The layout is inferred from the
alignment itself.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..errors import HmmContractError
from ..transitions import TransitionModel

logger = logging.getLogger(__name__)


def is_reordered(trans_model: TransitionModel, alignment: Sequence[int]) -> bool:
    """Infer whether an alignment uses the reordered layout.

    The first boundary between two transition-states decides: a self-loop
    just before it means reordered, a self-loop just after it means not
    reordered. If no boundary decides, a self-loop at the very start or end
    of the alignment does; otherwise the transition model's own convention
    is used.

    Args:
        trans_model: Transition model
        alignment: Sequence of transition-ids

    Returns:
        True if self-loops follow the forward transition of their state
    """
    for prev_id, next_id in zip(alignment, alignment[1:]):
        prev_state = trans_model.transition_id_to_transition_state(prev_id)
        next_state = trans_model.transition_id_to_transition_state(next_id)
        if prev_state == next_state:
            continue
        prev_loop = trans_model.is_self_loop(prev_id)
        next_loop = trans_model.is_self_loop(next_id)
        if prev_loop and next_loop:
            raise HmmContractError(
                f"Self-loops {prev_id} and {next_id} of different states are adjacent")
        if prev_loop:
            return True
        if next_loop:
            return False

    if alignment:
        if trans_model.is_self_loop(alignment[0]):
            return False
        if trans_model.is_self_loop(alignment[-1]):
            return True
    return trans_model.uses_reordered_alignments()


def split_to_phones(trans_model: TransitionModel,
                    alignment: Sequence[int]) -> Tuple[bool, List[List[int]]]:
    """Split an alignment into per-phone segments.

    A segment ends on a transition-id entering the final state of its phone
    (followed, in the reordered layout, by that state's self-loops). The
    segments always concatenate back to the alignment, even when the
    alignment is not well formed.

    Args:
        trans_model: Transition model
        alignment: Sequence of transition-ids

    Returns:
        Tuple of (ok, segments); ok is False if some segment does not end in
        a final state, changes phone without reaching a final state, or does
        not start in the first HMM-state of its phone

    Raises:
        HmmContractError: On a transition-id the model does not know
    """
    if not alignment:
        return True, []
    reordered = is_reordered(trans_model, alignment)

    end_points = []
    ok = True
    i = 0
    n = len(alignment)
    while i < n:
        trans_id = alignment[i]
        if trans_model.is_final(trans_id):
            if reordered:
                tstate = trans_model.transition_id_to_transition_state(trans_id)
                while (i + 1 < n and trans_model.is_self_loop(alignment[i + 1])
                       and trans_model.transition_id_to_transition_state(alignment[i + 1]) == tstate):
                    i += 1
            end_points.append(i + 1)
        elif i + 1 == n:
            ok = False
            end_points.append(i + 1)
        else:
            this_state = trans_model.transition_id_to_transition_state(trans_id)
            next_state = trans_model.transition_id_to_transition_state(alignment[i + 1])
            if (this_state != next_state
                    and trans_model.transition_state_to_phone(this_state)
                    != trans_model.transition_state_to_phone(next_state)):
                ok = False
                end_points.append(i + 1)
        i += 1

    segments = []
    start = 0
    for end in end_points:
        tstate = trans_model.transition_id_to_transition_state(alignment[start])
        if trans_model.transition_state_to_hmm_state(tstate) != 0:
            ok = False
        segments.append(list(alignment[start:end]))
        start = end

    if not ok:
        logger.debug(f"Alignment of {n} frames did not split cleanly into "
                     f"{len(segments)} phones")
    return ok, segments


def change_reordering_of_alignment(trans_model: TransitionModel,
                                   alignment: Sequence[int],
                                   reordered: Optional[bool] = None) -> List[int]:
    """Convert an alignment to the other layout.

    Args:
        trans_model: Transition model
        alignment: Sequence of transition-ids
        reordered: Layout of `alignment`; inferred when None

    Returns:
        Alignment in the opposite layout
    """
    if reordered is None:
        reordered = is_reordered(trans_model, alignment)
    result = list(alignment)
    n = len(result)
    pos = 0
    while pos < n:
        tstate = trans_model.transition_id_to_transition_state(result[pos])

        def same_state(j):
            return j < n and trans_model.transition_id_to_transition_state(result[j]) == tstate

        end = pos + 1
        if reordered:
            # Forward transition followed by its self-loops.
            if not trans_model.is_self_loop(result[pos]):
                while same_state(end) and trans_model.is_self_loop(result[end]):
                    end += 1
        elif trans_model.is_self_loop(result[pos]):
            # Self-loops followed by their forward transition.
            while same_state(end) and trans_model.is_self_loop(result[end]):
                end += 1
            if same_state(end):
                end += 1
        result[pos], result[end - 1] = result[end - 1], result[pos]
        pos = end
    return result
