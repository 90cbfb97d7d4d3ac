"""
tests/test_encoding.py
======================
Per-tree CBLV encodings: the feature sequences produced by Tree.encode, the
zero-padding formatter, the state-augmented variants and injectivity.

Expected sequences are derived by hand from the inorder traversals listed in
tests/test_tree.py; internal nodes contribute their root-distance and tips
their terminal branch length, both in visitation order.
"""

import os
import sys

import numpy as np
import pytest

_TREES_DIR = os.path.join(os.path.dirname(__file__), "trees")

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from phylovec._tree import Tree
from phylovec._encoding import (
    ENCODING_KINDS,
    PlainEncoding,
    StateEncoding,
    check_state_codes,
    encoding_width,
    format_encoding,
    n_blocks_for,
    resolve_kind,
)
from phylovec._errors import CapacityExceeded, InvalidState, MissingState

from examples_trees import caterpillar_newick, random_tree, reference_encoding


def load_tree(filename: str, **kwargs) -> Tree:
    path = os.path.join(_TREES_DIR, filename)
    with open(path) as fh:
        return Tree(fh.read().strip(), **kwargs)


# ======================================================================== #
# 1. Feature sequences                                                      #
# ======================================================================== #


class TestPlainSequences:
    @pytest.mark.parametrize(
        "filename, nodes, tips",
        [
            ("three_tip.tree", [0.5, 0.0], [0.2, 0.3, 0.4]),
            ("balanced_4leaf.tree", [0.6, 0.0, 0.5], [0.3, 0.4, 0.1, 0.2]),
            ("caterpillar_5leaf.tree", [3.0, 2.0, 1.0, 0.0], [1.0] * 5),
            ("two_leaf.tree", [0.0], [1.0, 2.0]),
            ("asymmetric_4leaf.tree", [2.0, 1.0, 0.0], [1.0] * 4),
        ],
    )
    def test_fixture_sequences(self, filename, nodes, tips):
        enc = load_tree(filename).encode()
        assert isinstance(enc, PlainEncoding)
        assert enc.kind == "plain"
        np.testing.assert_allclose(enc.nodes, nodes)
        np.testing.assert_allclose(enc.tips, tips)

    def test_sequence_lengths(self):
        rng = np.random.default_rng(1)
        for n in (2, 3, 9, 40):
            enc = random_tree(rng, n).encode()
            assert enc.nodes.shape == (n - 1,)
            assert enc.tips.shape == (n,)

    def test_unit_caterpillar(self):
        for n in (3, 6, 12):
            enc = Tree(caterpillar_newick(n)).encode()
            np.testing.assert_allclose(enc.nodes, np.arange(n - 2, -1, -1))
            np.testing.assert_allclose(enc.tips, np.ones(n))

    def test_agrees_with_recursive_reference(self):
        rng = np.random.default_rng(2024)
        for n in (2, 3, 4, 7, 15, 33, 60):
            for _ in range(4):
                tree = random_tree(rng, n)
                nodes, tips, _ = reference_encoding(tree)
                enc = tree.encode()
                np.testing.assert_array_equal(enc.nodes, nodes)
                np.testing.assert_array_equal(enc.tips, tips)

    def test_integer_lengths_with_ties(self):
        # Small integer branch lengths produce many exact reach ties.
        rng = np.random.default_rng(99)
        for _ in range(20):
            tree = random_tree(rng, 12, integer_lengths=True)
            nodes, tips, _ = reference_encoding(tree)
            enc = tree.encode()
            np.testing.assert_array_equal(enc.nodes, nodes)
            np.testing.assert_array_equal(enc.tips, tips)

    def test_arrays_are_read_only(self):
        enc = load_tree("three_tip.tree").encode()
        with pytest.raises(ValueError):
            enc.nodes[0] = 1.0
        with pytest.raises(ValueError):
            enc.tips[0] = 1.0

    def test_sequences_and_blocks(self):
        enc = load_tree("three_tip.tree").encode()
        assert enc.n_blocks == 2
        assert len(enc.sequences) == 2
        assert enc.sequences[0] is enc.nodes

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown encoding kind"):
            load_tree("three_tip.tree").encode("ternary")


# ======================================================================== #
# 2. Formatter                                                              #
# ======================================================================== #


class TestFormatter:
    def test_three_tip_exact(self):
        vec = load_tree("three_tip.tree").cblv(max_taxa=3)
        np.testing.assert_allclose(vec, [0.5, 0.0, 0.0, 0.2, 0.3, 0.4])

    def test_default_capacity_is_tip_count(self):
        tree = load_tree("balanced_4leaf.tree")
        assert tree.cblv().shape == (8,)

    def test_zero_padding(self):
        vec = load_tree("three_tip.tree").cblv(max_taxa=5)
        expected = [0.5, 0.0, 0.0, 0.0, 0.0, 0.2, 0.3, 0.4, 0.0, 0.0]
        np.testing.assert_allclose(vec, expected)

    def test_block_layout(self):
        enc = load_tree("balanced_4leaf.tree").encode()
        vec = format_encoding(enc, 6)
        np.testing.assert_array_equal(vec[:3], enc.nodes)
        np.testing.assert_array_equal(vec[3:6], 0.0)
        np.testing.assert_array_equal(vec[6:10], enc.tips)
        np.testing.assert_array_equal(vec[10:], 0.0)

    def test_capacity_exceeded(self):
        tree = load_tree("caterpillar_5leaf.tree")
        with pytest.raises(CapacityExceeded) as exc_info:
            tree.cblv(max_taxa=4)
        assert exc_info.value.length == 5
        assert exc_info.value.max_taxa == 4

    def test_exact_capacity_fits(self):
        vec = load_tree("caterpillar_5leaf.tree").cblv(max_taxa=5)
        assert vec.shape == (10,)

    def test_capacity_checked_on_every_block(self):
        # nodes fits max_taxa=2, tips does not
        enc = PlainEncoding.build([1.0, 0.0], [1.0, 1.0, 1.0])
        with pytest.raises(CapacityExceeded):
            format_encoding(enc, 2)

    @pytest.mark.parametrize("max_taxa", [0, -3])
    def test_max_taxa_must_be_positive(self, max_taxa):
        enc = load_tree("two_leaf.tree").encode()
        with pytest.raises(ValueError, match="max_taxa"):
            format_encoding(enc, max_taxa)

    @pytest.mark.parametrize("max_taxa", [4.9, 5.0, True, "5"])
    def test_max_taxa_must_be_integer(self, max_taxa):
        enc = load_tree("two_leaf.tree").encode()
        with pytest.raises(TypeError, match="max_taxa must be an integer"):
            format_encoding(enc, max_taxa)

    def test_numpy_integer_capacity(self):
        enc = load_tree("two_leaf.tree").encode()
        assert format_encoding(enc, np.int64(5)).shape == (10,)

    def test_cblv_rejects_fractional_capacity(self):
        with pytest.raises(TypeError):
            load_tree("three_tip.tree").cblv(max_taxa=4.9)

    def test_deterministic(self):
        newick = "(((A:0.3,B:0.1):0.2,C:0.9):0.4,(D:0.2,(E:0.5,F:0.5):0.1):0.3);"
        vecs = [Tree(newick).cblv(max_taxa=10) for _ in range(3)]
        for vec in vecs[1:]:
            np.testing.assert_array_equal(vec, vecs[0])

    def test_encoding_width(self):
        assert encoding_width("plain", 7) == 14
        assert encoding_width("binary-state", 7) == 21
        assert encoding_width("multi-state", 1) == 3

    def test_n_blocks_for(self):
        assert [n_blocks_for(k) for k in ENCODING_KINDS] == [2, 3, 3]

    def test_resolve_kind(self):
        assert resolve_kind("multi-state") == "multi-state"
        with pytest.raises(ValueError):
            resolve_kind("Plain")


# ======================================================================== #
# 3. Injectivity                                                            #
# ======================================================================== #


class TestInjectivity:
    def test_tie_trees_are_distinct(self):
        a = Tree("((A:1,B:1):1,C:2);")
        b = Tree("(A:2,(B:1,C:1):1);")
        np.testing.assert_allclose(a.encode().nodes, [1.0, 0.0])
        np.testing.assert_allclose(a.encode().tips, [1.0, 1.0, 2.0])
        np.testing.assert_allclose(b.encode().nodes, [0.0, 1.0])
        np.testing.assert_allclose(b.encode().tips, [2.0, 1.0, 1.0])
        assert not np.array_equal(a.cblv(4), b.cblv(4))

    def test_different_tip_counts_with_positive_tip_lengths(self):
        # The 3-tip tree's last tip branch is positive, so its tip block
        # differs from the 2-tip tree's zero padding.
        vecs = [
            Tree("(A:1,B:1);").cblv(3),
            Tree("((A:1,B:0):0,C:1);").cblv(3),
        ]
        assert not np.array_equal(vecs[0], vecs[1])

    def test_zero_lengths_indistinguishable_from_padding(self):
        # Padding and a genuine zero are the same value, so a trailing
        # zero-length tip plus a zero-height internal node look like padding.
        small = Tree("(A:1,B:1);").cblv(3)
        large = Tree("((A:1,B:1):0,C:0);").cblv(3)
        np.testing.assert_array_equal(small, [0, 0, 0, 1, 1, 0])
        np.testing.assert_array_equal(large, small)

    def test_distinct_shapes_distinct_vectors(self):
        newicks = [
            "(((A:1,B:1):1,C:1):1,D:1);",
            "((A:1,B:1):1,(C:1,D:1):1);",
            "(((A:1,B:2):1,C:1):1,D:1);",
            "((A:1,B:1):2,(C:1,D:1):1);",
            "((A:1,B:1):1,(C:1,D:2):1);",
        ]
        vecs = [Tree(nwk).cblv(6) for nwk in newicks]
        for i in range(len(vecs)):
            for j in range(i + 1, len(vecs)):
                assert not np.array_equal(vecs[i], vecs[j]), (i, j)

    def test_node_sequence_independent_of_child_order(self):
        # Swapping the children of every node gives the same tree.  Only
        # cherries keep their input order, so the node block must agree.
        a = Tree("((A:0.3,(B:0.1,C:0.7):0.2):0.4,D:0.5);")
        b = Tree("(D:0.5,((C:0.7,B:0.1):0.2,A:0.3):0.4);")
        assert not np.array_equal(a.names, b.names)
        np.testing.assert_array_equal(a.encode().nodes, b.encode().nodes)


# ======================================================================== #
# 4. State-augmented variants                                               #
# ======================================================================== #


class TestStateEncodings:
    def test_binary_state(self):
        tree = load_tree("three_tip.tree", states={"A": 1, "B": 0, "C": 1})
        enc = tree.encode("binary-state")
        assert isinstance(enc, StateEncoding)
        assert enc.kind == "binary-state"
        assert enc.n_blocks == 3
        np.testing.assert_allclose(enc.states, [1, 0, 1])

    def test_binary_state_vector(self):
        tree = load_tree("three_tip.tree", states={"A": 1, "B": 0, "C": 1})
        vec = tree.cblv(max_taxa=3, kind="binary-state")
        np.testing.assert_allclose(vec, [0.5, 0, 0, 0.2, 0.3, 0.4, 1, 0, 1])

    def test_states_follow_visitation_order(self):
        # balanced visits tips C, D, A, B
        tree = load_tree("balanced_4leaf.tree", states=[0, 1, 2, 3])
        enc = tree.encode("multi-state", n_states=4)
        np.testing.assert_allclose(enc.states, [2, 3, 0, 1])

    def test_state_sequence_matches_reference(self):
        rng = np.random.default_rng(5)
        for n in (3, 10, 25):
            tree = random_tree(rng, n, n_states=5)
            _, _, states = reference_encoding(tree)
            np.testing.assert_array_equal(tree.encode("multi-state", 5).states, states)

    def test_state_block_padding(self):
        tree = Tree("(A:1,B:2);", states=[1, 1])
        vec = tree.cblv(max_taxa=3, kind="binary-state")
        np.testing.assert_allclose(vec, [0, 0, 0, 1, 2, 0, 1, 1, 0])

    def test_plain_ignores_states(self):
        with_states = load_tree("three_tip.tree", states={"A": 1, "B": 0, "C": 1})
        without = load_tree("three_tip.tree")
        np.testing.assert_array_equal(with_states.cblv(), without.cblv())

    def test_missing_state(self):
        tree = load_tree("three_tip.tree", states={"A": 1, "B": 0})
        assert not tree.has_states
        with pytest.raises(MissingState) as exc_info:
            tree.encode("binary-state")
        assert exc_info.value.node == 2
        assert exc_info.value.name == "C"

    def test_missing_state_from_none_entry(self):
        tree = Tree("(A:1,B:2);", states=[None, 1])
        with pytest.raises(MissingState):
            tree.cblv(kind="multi-state")

    def test_no_states_at_all(self):
        with pytest.raises(MissingState):
            load_tree("two_leaf.tree").encode("binary-state")

    def test_binary_state_rejects_code_two(self):
        tree = load_tree("three_tip.tree", states={"A": 2, "B": 0, "C": 1})
        with pytest.raises(InvalidState):
            tree.encode("binary-state")

    def test_multi_state_label_space(self):
        tree = load_tree("three_tip.tree", states={"A": 2, "B": 0, "C": 1})
        assert tree.encode("multi-state").states.tolist() == [2.0, 0.0, 1.0]
        assert tree.encode("multi-state", n_states=3).kind == "multi-state"
        with pytest.raises(InvalidState):
            tree.encode("multi-state", n_states=2)

    def test_n_states_below_two(self):
        tree = load_tree("three_tip.tree", states={"A": 0, "B": 0, "C": 0})
        with pytest.raises(ValueError, match="n_states"):
            tree.encode("multi-state", n_states=1)

    def test_negative_state_rejected_at_construction(self):
        with pytest.raises(InvalidState):
            Tree("(A:1,B:2);", states=[0, -2])

    def test_unknown_tip_name_in_state_map(self):
        with pytest.raises(KeyError):
            Tree("(A:1,B:2);", states={"Z": 1})

    def test_wrong_state_sequence_length(self):
        with pytest.raises(ValueError):
            Tree("(A:1,B:2);", states=[0, 1, 1])

    def test_state_encoding_kind_checked(self):
        with pytest.raises(ValueError):
            StateEncoding.build([0.0], [1.0, 1.0], [0, 1], "plain")

    def test_check_state_codes_empty(self):
        check_state_codes(np.empty(0, dtype=np.int32), "binary-state")
