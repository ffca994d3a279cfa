"""Tests for HMM topologies and decision trees."""

import pytest

from hmmgraph.context_dep import ContextDependency
from hmmgraph.errors import HmmContractError, TopologyError
from hmmgraph.topology import HmmState, HmmTopology

from conftest import linear_entry, one_state_entry


TOPOLOGY_TEXT = """
<Topology>
<TopologyEntry>
<ForPhones> 1 2 </ForPhones>
<State> 0 <PdfClass> 0 <Transition> 0 0.5 <Transition> 1 0.5 </State>
<State> 1 <PdfClass> 1 <Transition> 1 0.4 <Transition> 2 0.6 </State>
<State> 2 </State>
</TopologyEntry>
<TopologyEntry>
<ForPhones> 3 </ForPhones>
<State> 0 <PdfClass> 0 <Transition> 0 0.75 <Transition> 1 0.25 </State>
<State> 1 </State>
</TopologyEntry>
</Topology>
"""


class TestHmmTopology:
    """Test cases for HmmTopology."""

    def test_phones_and_pdf_classes(self, topology):
        """Test phone listing and pdf-class counts."""
        assert topology.phones == [1, 2, 3]
        assert 2 in topology
        assert 4 not in topology
        assert topology.num_pdf_classes(1) == 2
        assert topology.num_pdf_classes(3) == 1

    def test_min_length(self, topology):
        """Test minimum number of frames per phone."""
        assert topology.min_length(1) == 2
        assert topology.min_length(3) == 1

    def test_unknown_phone(self, topology):
        """Test that unknown phones are rejected."""
        with pytest.raises(HmmContractError):
            topology.topology_for_phone(7)
        with pytest.raises(HmmContractError):
            topology.min_length(0)

    def test_equality(self, topology):
        """Test that topologies with the same entries are equal."""
        same = HmmTopology({1: linear_entry(), 2: linear_entry(), 3: one_state_entry()})
        different = HmmTopology({1: one_state_entry(), 2: linear_entry(), 3: one_state_entry()})
        assert topology == same
        assert topology != different

    def test_probabilities_must_sum_to_one(self):
        """Test rejection of non-stochastic states."""
        entry = [HmmState(0, [(0, 0.5), (1, 0.2)]), HmmState(None)]
        with pytest.raises(TopologyError):
            HmmTopology({1: entry})

    def test_final_state_must_be_non_emitting(self):
        """Test rejection of an emitting last state."""
        entry = [HmmState(0, [(1, 1.0)]), HmmState(0, [(1, 1.0)])]
        with pytest.raises(TopologyError):
            HmmTopology({1: entry})

    def test_unreachable_final_state(self):
        """Test rejection of a topology that never exits."""
        entry = [HmmState(0, [(0, 1.0)]), HmmState(None)]
        with pytest.raises(TopologyError):
            HmmTopology({1: entry})

    def test_pdf_classes_must_be_contiguous(self):
        """Test rejection of pdf-classes with gaps."""
        entry = [HmmState(0, [(1, 1.0)]), HmmState(2, [(2, 1.0)]), HmmState(None)]
        with pytest.raises(TopologyError):
            HmmTopology({1: entry})

    def test_phone_zero_rejected(self):
        """Test that phone 0 is reserved."""
        with pytest.raises(TopologyError):
            HmmTopology({0: linear_entry()})


class TestTopologyText:
    """Test cases for reading topologies from text."""

    def test_from_text(self, topology):
        """Test parsing the text form."""
        parsed = HmmTopology.from_text(TOPOLOGY_TEXT)
        assert parsed == topology

    def test_read(self, tmp_path, topology):
        """Test reading the text form from a file."""
        path = tmp_path / "topo.txt"
        path.write_text(TOPOLOGY_TEXT)
        assert HmmTopology.read(str(path)) == topology

    def test_missing_end_tag(self):
        """Test that truncated text is rejected."""
        with pytest.raises(TopologyError):
            HmmTopology.from_text(TOPOLOGY_TEXT.replace("</Topology>", ""))

    def test_bad_number(self):
        """Test that a non-numeric probability is rejected."""
        with pytest.raises(TopologyError):
            HmmTopology.from_text(TOPOLOGY_TEXT.replace("0.75", "high"))

    def test_phone_in_two_entries(self):
        """Test that a phone may only have one topology."""
        with pytest.raises(TopologyError):
            HmmTopology.from_text(TOPOLOGY_TEXT.replace("<ForPhones> 3 ", "<ForPhones> 2 3 "))


class TestContextDependency:
    """Test cases for the table-driven tree."""

    def test_monophone(self, tree):
        """Test one pdf per (phone, pdf-class)."""
        assert tree.context_width == 1
        assert tree.num_pdfs == 5
        assert tree.compute((1,), 1) == 1
        assert tree.compute((3,), 0) == 4

    def test_context_override(self, triphone_tree):
        """Test that window-specific pdfs take precedence."""
        assert triphone_tree.compute((1, 1, 2), 1) == 5
        assert triphone_tree.compute((0, 1, 2), 1) == 1
        assert triphone_tree.compute((1, 1, 2), 0) == 0

    def test_unresolvable(self, triphone_tree):
        """Test windows the tree cannot resolve."""
        assert triphone_tree.compute((1, 2), 0) is None
        assert triphone_tree.compute((1, 0, 2), 0) is None
        assert triphone_tree.compute((0, 1, 0), 5) is None

    def test_pdf_info(self, triphone_tree, topology):
        """Test the (phone, pdf-class) pairs reaching each pdf."""
        phones = topology.phones
        pdf_info = triphone_tree.get_pdf_info(
            phones, [topology.num_pdf_classes(p) for p in phones])
        assert len(pdf_info) == 6
        assert pdf_info[1] == {(1, 1)}
        assert pdf_info[5] == {(1, 1)}

    def test_invalid_central_position(self):
        """Test that the central position must be inside the window."""
        with pytest.raises(ValueError):
            ContextDependency(3, 3, {})
