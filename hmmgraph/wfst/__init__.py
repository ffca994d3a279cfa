"""Weighted finite-state transducers over transition-ids.

This package implements:
- H: phone acceptors and the H transducer over a catalog of phones-in-context
- Self-loop insertion into graphs built without self-loops
- Transition probabilities on graphs and lattices
"""

from .build_h import (
    HmmCache,
    HTransducerConfig,
    IlabelMapping,
    get_h_transducer,
    get_hmm_as_fsa,
    get_hmm_as_fsa_simple,
    get_ilabel_mapping,
    get_pdf_to_transition_id_transducer,
)
from .self_loops import add_self_loops
from .trans_probs import (
    add_transition_probs,
    add_transition_probs_to_lattice,
    convert_transition_ids_to_pdfs,
)

__all__ = [
    "HmmCache",
    "HTransducerConfig",
    "IlabelMapping",
    "get_h_transducer",
    "get_hmm_as_fsa",
    "get_hmm_as_fsa_simple",
    "get_ilabel_mapping",
    "get_pdf_to_transition_id_transducer",
    "add_self_loops",
    "add_transition_probs",
    "add_transition_probs_to_lattice",
    "convert_transition_ids_to_pdfs",
]
