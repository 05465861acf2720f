"""Tests for fork-tree navigation."""

import pytest

from history_lens.models import TreeNode
from history_lens.tree import BranchNavigator


def _node(node_id, parent=None, children=(), message_id=None, conv="c1", depth=0):
    return TreeNode(
        id=node_id,
        conversation_id=conv,
        message_id=message_id or f"msg-{node_id}",
        parent_id=parent,
        children_ids=list(children),
        depth=depth,
        is_root=parent is None,
    )


@pytest.fixture
def fork():
    """A -> B -> {C, D}; C -> E."""
    return BranchNavigator(
        [
            _node("A", children=["B"]),
            _node("B", parent="A", children=["C", "D"], depth=1),
            _node("C", parent="B", children=["E"], depth=2),
            _node("D", parent="B", depth=2),
            _node("E", parent="C", depth=3),
        ]
    )


class TestResolvePath:
    """Tests for root-to-node path resolution."""

    def test_path_to_leaf(self, fork):
        """The path runs from the root down to the target."""
        assert fork.resolve_path("D") == ["A", "B", "D"]

    def test_path_to_root(self, fork):
        """A root resolves to itself."""
        assert fork.resolve_path("A") == ["A"]

    def test_unknown_id(self, fork):
        """Unknown ids resolve to None."""
        assert fork.resolve_path("zzz") is None

    def test_message_id_lookup(self, fork):
        """Targets may be given as message ids."""
        assert fork.resolve_path("msg-D") == ["A", "B", "D"]

    def test_dangling_parent_stops_walk(self):
        """A parent id with no node ends the path."""
        nav = BranchNavigator([_node("X", parent="missing")])
        assert nav.resolve_path("X") == ["X"]

    def test_cycle_terminates(self):
        """Corrupt parent cycles do not loop forever."""
        nav = BranchNavigator([_node("a", parent="b"), _node("b", parent="a")])
        assert nav.resolve_path("a") == ["b", "a"]


class TestSelect:
    """Tests for branch selection."""

    def test_select_sets_path(self, fork):
        """Selecting a node stores its path."""
        assert fork.select("D") == ["A", "B", "D"]
        assert fork.selected_path == ["A", "B", "D"]
        assert fork.branch_filtered

    def test_unknown_id_is_noop(self, fork):
        """Selecting an unknown node keeps the prior selection."""
        fork.select("D")
        assert fork.select("nope") == ["A", "B", "D"]
        assert fork.selected_path == ["A", "B", "D"]

    def test_clear(self, fork):
        """clear() removes the selection."""
        fork.select("D")
        fork.clear()
        assert fork.selected_path == []
        assert not fork.branch_filtered


class TestMessageIds:
    """Tests for branch membership."""

    def test_leaf_path_members(self, fork):
        """A path ending at a leaf contains exactly its nodes' messages."""
        assert fork.message_ids_for_path(["A", "B", "D"]) == {"msg-A", "msg-B", "msg-D"}

    def test_first_child_continuation(self, fork):
        """A path ending above the leaves continues down the first child."""
        assert fork.message_ids_for_path(["A", "B"]) == {"msg-A", "msg-B", "msg-C", "msg-E"}

    def test_filter_messages(self, fork, make_message):
        """Messages off the selected branch are dropped."""
        messages = [make_message(f"msg-{n}") for n in "ABCDE"]
        fork.select("D")
        kept = fork.filter_messages(messages)
        assert [m.message_id for m in kept] == ["msg-A", "msg-B", "msg-D"]

    def test_no_selection_passes_through(self, fork, make_message):
        """Without a selection every message is kept."""
        messages = [make_message(f"msg-{n}") for n in "ABCDE"]
        assert fork.filter_messages(messages) == messages


class TestLinearConversation:
    """Conversations without tree data."""

    def test_no_tree(self, make_message):
        """Selection fails and messages pass through unchanged."""
        nav = BranchNavigator()
        messages = [make_message("m1"), make_message("m2")]
        assert not nav.has_tree
        assert nav.select("m1") == []
        assert nav.filter_messages(messages) == messages
        assert nav.stats().node_count == 0


class TestForConversation:
    """Tests for building a navigator from payload nodes."""

    def test_matches_base_id(self, sample_payload):
        """Nodes keyed by the raw source id belong to the prefixed conversation."""
        nav = BranchNavigator.for_conversation(sample_payload.nodes, "chatgpt:c1")
        assert len(nav.nodes) == 6

    def test_other_conversation_empty(self, sample_payload):
        """Nodes of other conversations are excluded."""
        nav = BranchNavigator.for_conversation(sample_payload.nodes, "claude:c2")
        assert not nav.has_tree

    def test_json_encoded_children(self, sample_payload):
        """children_ids stored as JSON strings are followed."""
        nav = BranchNavigator.for_conversation(sample_payload.nodes, "chatgpt:c1")
        assert nav.message_ids_for_path(["n1", "n2", "n3"]) == {"m1", "m2", "m3", "m4", "m6"}

    def test_stats_and_branch_points(self, sample_payload):
        """Stats summarize the tree shape."""
        nav = BranchNavigator.for_conversation(sample_payload.nodes, "chatgpt:c1")
        stats = nav.stats()
        assert stats.node_count == 6
        assert stats.root_count == 1
        assert stats.max_depth == 4
        assert stats.branch_point_count == 1
        assert [n.id for n in nav.branch_points()] == ["n3"]
