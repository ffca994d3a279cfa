"""Lattice-style graphs whose weights are (graph cost, acoustic cost) pairs."""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional


@dataclass(frozen=True)
class LatticeWeight:
    """Pair of costs (negated log-probabilities); the semiring product adds both."""
    graph_cost: float = 0.0
    acoustic_cost: float = 0.0

    @classmethod
    def one(cls):
        return cls(0.0, 0.0)

    @classmethod
    def zero(cls):
        return cls(math.inf, math.inf)

    def times(self, other):
        return LatticeWeight(self.graph_cost + other.graph_cost,
                             self.acoustic_cost + other.acoustic_cost)

    def is_zero(self):
        return math.isinf(self.graph_cost) or math.isinf(self.acoustic_cost)


@dataclass
class LatticeArc:
    """Arc of a lattice."""
    ilabel: int
    olabel: int
    weight: LatticeWeight
    nextstate: int


@dataclass
class Lattice:
    """Mutable lattice: states are consecutive integers from 0.

    Arcs of a state are kept in insertion order and may be modified in
    place through ``arcs(state)``.
    """

    _arcs: List[List[LatticeArc]] = field(default_factory=list, init=False,
                                          repr=False)
    _finals: Dict[int, LatticeWeight] = field(default_factory=dict, init=False,
                                              repr=False)
    start: Optional[int] = field(default=None, init=False)

    def add_state(self):
        self._arcs.append([])
        return len(self._arcs) - 1

    def num_states(self):
        return len(self._arcs)

    def states(self) -> Iterator[int]:
        return iter(range(len(self._arcs)))

    def set_start(self, state):
        self.start = state

    def set_final(self, state, weight=None):
        self._finals[state] = LatticeWeight.one() if weight is None else weight

    def final(self, state):
        return self._finals.get(state, LatticeWeight.zero())

    def add_arc(self, state, arc):
        """Append an arc to a state.

        Args:
            state: Source state
            arc: LatticeArc whose nextstate must already exist

        Returns:
            The added arc
        """
        if not 0 <= arc.nextstate < len(self._arcs):
            raise ValueError(f"Arc to unknown state {arc.nextstate}")
        self._arcs[state].append(arc)
        return arc

    def arcs(self, state):
        return self._arcs[state]

    def num_arcs(self, state=None):
        if state is None:
            return sum(len(arcs) for arcs in self._arcs)
        return len(self._arcs[state])
