"""Phonetic-context decision trees.

The graph builders only need a narrow view of the tree: its context width,
the position of the central phone in a window, and a way to map a
(phone window, pdf-class) pair to a pdf-id. Any object providing
ContextDependencyInterface can be used.
"""

from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .topology import HmmTopology


class ContextDependencyInterface(Protocol):
    """Operations the graph builders need from a decision tree."""

    context_width: int
    central_position: int

    def compute(self, phone_window: Sequence[int], pdf_class: int) -> Optional[int]:
        """Pdf-id for a pdf-class of the central phone, None if unresolvable."""
        ...

    def get_pdf_info(self, phones: Sequence[int],
                     num_pdf_classes: Sequence[int]) -> List[Set[Tuple[int, int]]]:
        """For every pdf-id, the (phone, pdf-class) pairs that may map to it."""
        ...


class ContextDependency:
    """Table-driven decision tree.

    A pdf-id is looked up first in `context_pdfs`, keyed by the full phone
    window, and then in `pdfs`, keyed by the central phone only.
    """

    def __init__(self,
                 context_width: int,
                 central_position: int,
                 pdfs: Dict[Tuple[int, int], int],
                 context_pdfs: Optional[Dict[Tuple[Tuple[int, ...], int], int]] = None):
        """Initialize tree.

        Args:
            context_width: Number of phones in a context window
            central_position: Index of the modelled phone in the window
            pdfs: Mapping from (central phone, pdf-class) to pdf-id
            context_pdfs: Mapping from (phone window, pdf-class) to pdf-id
        """
        if not 0 <= central_position < context_width:
            raise ValueError(
                f"Central position {central_position} outside window of width {context_width}")
        self.context_width = context_width
        self.central_position = central_position
        self.pdfs = dict(pdfs)
        self.context_pdfs = {}
        for (window, pdf_class), pdf in (context_pdfs or {}).items():
            if len(window) != context_width:
                raise ValueError(f"Window {window} does not have width {context_width}")
            self.context_pdfs[(tuple(window), pdf_class)] = pdf

    @classmethod
    def monophone(cls, topology: HmmTopology) -> "ContextDependency":
        """Tree with one pdf per (phone, pdf-class), ignoring context."""
        pdfs = {}
        for phone in topology.phones:
            for pdf_class in range(topology.num_pdf_classes(phone)):
                pdfs[(phone, pdf_class)] = len(pdfs)
        return cls(1, 0, pdfs)

    @property
    def num_pdfs(self) -> int:
        all_pdfs = list(self.pdfs.values()) + list(self.context_pdfs.values())
        return max(all_pdfs) + 1 if all_pdfs else 0

    def compute(self, phone_window: Sequence[int], pdf_class: int) -> Optional[int]:
        if len(phone_window) != self.context_width:
            return None
        window = tuple(phone_window)
        phone = window[self.central_position]
        if phone <= 0:
            return None
        pdf = self.context_pdfs.get((window, pdf_class))
        if pdf is None:
            pdf = self.pdfs.get((phone, pdf_class))
        return pdf

    def get_pdf_info(self, phones: Sequence[int],
                     num_pdf_classes: Sequence[int]) -> List[Set[Tuple[int, int]]]:
        """List the (phone, pdf-class) pairs reaching each pdf-id.

        Args:
            phones: Phones to consider
            num_pdf_classes: Number of pdf-classes of each phone in `phones`

        Returns:
            List indexed by pdf-id of sets of (phone, pdf-class)
        """
        allowed = {(phone, pdf_class)
                   for phone, n in zip(phones, num_pdf_classes)
                   for pdf_class in range(n)}
        pdf_info = [set() for _ in range(self.num_pdfs)]
        for key, pdf in self.pdfs.items():
            if key in allowed:
                pdf_info[pdf].add(key)
        for (window, pdf_class), pdf in self.context_pdfs.items():
            key = (window[self.central_position], pdf_class)
            if key in allowed:
                pdf_info[pdf].add(key)
        return pdf_info
