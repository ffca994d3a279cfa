"""HMM topologies.

This module implements:
1. HmmState: one state of a phone's HMM with its outgoing transitions
2. HmmTopology: the per-phone HMM structure used to build phone acceptors
3. A reader for the text form of a topology

Every state of a topology entry except the last one is emitting; the last
state is the non-emitting final state and has no transitions.

    <Topology>
    <TopologyEntry>
    <ForPhones> 1 2 3 </ForPhones>
    <State> 0 <PdfClass> 0 <Transition> 0 0.5 <Transition> 1 0.5 </State>
    <State> 1 <PdfClass> 1 <Transition> 1 0.4 <Transition> 2 0.6 </State>
    <State> 2 </State>
    </TopologyEntry>
    </Topology>
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import HmmContractError, TopologyError


@dataclass
class HmmState:
    """State of a phone HMM.

    Attributes:
        pdf_class: Pdf-class emitted by the state, None for the final state
        transitions: List of (destination state, probability)
    """
    pdf_class: Optional[int]
    transitions: List[Tuple[int, float]] = field(default_factory=list)


TopologyEntry = List[HmmState]


class HmmTopology:
    """Per-phone HMM topologies."""

    def __init__(self, entries: Dict[int, TopologyEntry]):
        """Initialize topology.

        Args:
            entries: Mapping from phone id to its list of HMM states
        """
        self._entries = {}
        self._min_lengths = {}
        for phone, entry in entries.items():
            if phone <= 0:
                raise TopologyError(f"Phone ids must be positive, got {phone}")
            self._check_entry(phone, entry)
            self._entries[phone] = list(entry)
            self._min_lengths[phone] = self._compute_min_length(phone, entry)

    @staticmethod
    def _check_entry(phone: int, entry: TopologyEntry) -> None:
        if len(entry) < 2:
            raise TopologyError(
                f"Topology for phone {phone} needs an emitting and a final state")
        final = entry[-1]
        if final.pdf_class is not None or final.transitions:
            raise TopologyError(
                f"Last state of phone {phone} must be non-emitting without transitions")

        pdf_classes = set()
        for i, state in enumerate(entry[:-1]):
            if state.pdf_class is None or state.pdf_class < 0:
                raise TopologyError(
                    f"State {i} of phone {phone} must have a pdf-class")
            pdf_classes.add(state.pdf_class)
            if not state.transitions:
                raise TopologyError(f"State {i} of phone {phone} has no transitions")
            total = 0.0
            for dst, prob in state.transitions:
                if not 0 <= dst < len(entry):
                    raise TopologyError(
                        f"Transition {i}->{dst} of phone {phone} is out of range")
                if prob < 0.0:
                    raise TopologyError(
                        f"Negative probability on transition {i}->{dst} of phone {phone}")
                total += prob
            if abs(total - 1.0) > 1e-4:
                raise TopologyError(
                    f"Transitions out of state {i} of phone {phone} sum to {total}")
            dsts = [dst for dst, _ in state.transitions]
            if len(set(dsts)) != len(dsts):
                raise TopologyError(
                    f"Duplicate transitions out of state {i} of phone {phone}")

        if pdf_classes != set(range(len(pdf_classes))):
            raise TopologyError(
                f"Pdf-classes of phone {phone} must be numbered from zero")

    @staticmethod
    def _compute_min_length(phone: int, entry: TopologyEntry) -> int:
        # Breadth-first search; every transition consumes one frame.
        final = len(entry) - 1
        dist = {0: 0}
        queue = deque([0])
        while queue:
            s = queue.popleft()
            if s == final:
                return dist[s]
            for dst, _ in entry[s].transitions:
                if dst not in dist:
                    dist[dst] = dist[s] + 1
                    queue.append(dst)
        raise TopologyError(f"Final state of phone {phone} is not reachable")

    @property
    def phones(self) -> List[int]:
        """Sorted list of phones covered by the topology."""
        return sorted(self._entries)

    def __contains__(self, phone: int) -> bool:
        return phone in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(self.phones)

    def __eq__(self, other) -> bool:
        if not isinstance(other, HmmTopology):
            return NotImplemented
        return self._entries == other._entries

    def topology_for_phone(self, phone: int) -> TopologyEntry:
        """Get the HMM states of a phone.

        Raises:
            HmmContractError: If the phone is not covered by the topology
        """
        try:
            return self._entries[phone]
        except KeyError:
            raise HmmContractError(f"Phone {phone} is not in the topology") from None

    def num_pdf_classes(self, phone: int) -> int:
        """Number of distinct pdf-classes used by a phone's HMM."""
        entry = self.topology_for_phone(phone)
        return max(state.pdf_class for state in entry[:-1]) + 1

    def min_length(self, phone: int) -> int:
        """Smallest number of frames needed to traverse a phone's HMM."""
        self.topology_for_phone(phone)
        return self._min_lengths[phone]

    @classmethod
    def from_text(cls, text: str) -> "HmmTopology":
        """Parse the text form of a topology.

        Args:
            text: Topology text

        Returns:
            Parsed topology
        """
        tokens = text.split()
        pos = 0

        def expect(token):
            nonlocal pos
            if pos >= len(tokens) or tokens[pos] != token:
                found = tokens[pos] if pos < len(tokens) else "end of input"
                raise TopologyError(f"Expected {token}, found {found}")
            pos += 1

        def read_number(kind):
            nonlocal pos
            if pos >= len(tokens):
                raise TopologyError(f"Expected {kind}, found end of input")
            try:
                value = kind(tokens[pos])
            except ValueError:
                raise TopologyError(f"Expected {kind.__name__}, found {tokens[pos]}") from None
            pos += 1
            return value

        entries = {}
        expect("<Topology>")
        while pos < len(tokens) and tokens[pos] == "<TopologyEntry>":
            pos += 1
            expect("<ForPhones>")
            phones = []
            while pos < len(tokens) and tokens[pos] != "</ForPhones>":
                phones.append(read_number(int))
            expect("</ForPhones>")

            entry = []
            while pos < len(tokens) and tokens[pos] == "<State>":
                pos += 1
                index = read_number(int)
                if index != len(entry):
                    raise TopologyError(f"States must be numbered in order, got {index}")
                pdf_class = None
                if pos < len(tokens) and tokens[pos] == "<PdfClass>":
                    pos += 1
                    pdf_class = read_number(int)
                transitions = []
                while pos < len(tokens) and tokens[pos] == "<Transition>":
                    pos += 1
                    dst = read_number(int)
                    prob = read_number(float)
                    transitions.append((dst, prob))
                expect("</State>")
                entry.append(HmmState(pdf_class, transitions))
            expect("</TopologyEntry>")

            for phone in phones:
                if phone in entries:
                    raise TopologyError(f"Phone {phone} appears in two topology entries")
                entries[phone] = entry
        expect("</Topology>")
        if pos != len(tokens):
            raise TopologyError(f"Trailing tokens after </Topology>: {tokens[pos]}")

        return cls(entries)

    @classmethod
    def read(cls, file_path: str) -> "HmmTopology":
        """Read a topology from a text file."""
        with open(file_path, 'r', encoding='utf-8') as f:
            return cls.from_text(f.read())
