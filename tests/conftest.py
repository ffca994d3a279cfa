"""Shared fixtures: small topologies, trees and transition models.

With the monophone tree over `topology`, transition-ids are:
    phone 1: 1 (state 0 loop), 2 (0 -> 1), 3 (state 1 loop), 4 (1 -> final)
    phone 2: 5, 6, 7, 8 (same layout as phone 1)
    phone 3: 9 (state 0 loop), 10 (0 -> final)
"""

import math

import pytest

from hmmgraph.context_dep import ContextDependency
from hmmgraph.topology import HmmState, HmmTopology
from hmmgraph.transitions import TransitionModel


def linear_entry():
    return [
        HmmState(0, [(0, 0.5), (1, 0.5)]),
        HmmState(1, [(1, 0.4), (2, 0.6)]),
        HmmState(None),
    ]


def one_state_entry():
    return [
        HmmState(0, [(0, 0.75), (1, 0.25)]),
        HmmState(None),
    ]


def arc_prob_sum(fst, state):
    """Total probability leaving a state, final probability included."""
    total = math.exp(-float(fst.final(state)))
    for arc in fst.arcs(state):
        total += math.exp(-float(arc.weight))
    return total


@pytest.fixture
def topology():
    return HmmTopology({1: linear_entry(), 2: linear_entry(), 3: one_state_entry()})


@pytest.fixture
def tree(topology):
    return ContextDependency.monophone(topology)


@pytest.fixture
def trans_model(tree, topology):
    return TransitionModel(tree, topology)


@pytest.fixture
def reordered_model(tree, topology):
    return TransitionModel(tree, topology, reorder=True)


@pytest.fixture
def triphone_tree():
    """Left-centre-right tree; phone 1 followed by phone 2 has its own pdf 5."""
    pdfs = {(1, 0): 0, (1, 1): 1, (2, 0): 2, (2, 1): 3, (3, 0): 4}
    return ContextDependency(3, 1, pdfs, context_pdfs={((1, 1, 2), 1): 5})


@pytest.fixture
def triphone_model(triphone_tree, topology):
    return TransitionModel(triphone_tree, topology)
