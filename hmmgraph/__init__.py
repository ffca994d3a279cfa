"""HMM graph compilation.

Compiles HMM topologies, decision trees and transition models into weighted
finite-state transducers, and keeps frame-level alignments consistent across
model changes.
"""

__version__ = "0.1.0"

from .errors import HmmContractError, TopologyError
from .topology import HmmState, HmmTopology
from .context_dep import ContextDependency, ContextDependencyInterface
from .transitions import TransitionModel
from .lattice import Lattice, LatticeArc, LatticeWeight

__all__ = [
    "HmmContractError",
    "TopologyError",
    "HmmState",
    "HmmTopology",
    "ContextDependency",
    "ContextDependencyInterface",
    "TransitionModel",
    "Lattice",
    "LatticeArc",
    "LatticeWeight",
]
