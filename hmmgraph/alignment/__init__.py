"""Frame-level alignments: splitting into phones and conversion between models."""

from .split import change_reordering_of_alignment, is_reordered, split_to_phones
from .convert import (
    compute_new_phone_lengths,
    convert_alignment,
    convert_alignments,
    get_random_alignment_for_phone,
)
from .prons import Pronunciation, convert_phnx_to_prons

__all__ = [
    "change_reordering_of_alignment",
    "is_reordered",
    "split_to_phones",
    "compute_new_phone_lengths",
    "convert_alignment",
    "convert_alignments",
    "get_random_alignment_for_phone",
    "Pronunciation",
    "convert_phnx_to_prons",
]
