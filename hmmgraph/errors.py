"""Exceptions raised by hmmgraph.

Only caller-contract violations are raised. Data-quality problems (partial
alignments, mismatched word sequences, phones too short for a new topology)
are reported through return values instead.
"""


class HmmContractError(ValueError):
    """The inputs assembled by the caller are inconsistent.

    Examples are a context window of the wrong width, a phone the tree
    cannot resolve, an unknown transition-id or a graph that already has
    self-loops when it was declared self-loop-free.
    """


class TopologyError(HmmContractError):
    """A topology definition is malformed."""
