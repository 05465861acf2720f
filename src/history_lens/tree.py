"""Fork-tree navigation for conversations with regenerated replies."""

import logging
from collections.abc import Iterable

from .models import Message, TreeNode, TreeStats

logger = logging.getLogger(__name__)


def _base_conversation_id(conv_id: str) -> str:
    """Strip the "vendor:" prefix: tree payloads may use the raw source id."""
    return conv_id.split(":", 1)[1] if ":" in conv_id else conv_id


class BranchNavigator:
    """Branch selection state over one conversation's tree nodes.

    A conversation without nodes is linear: nothing can be selected and
    filter_messages() passes messages through untouched.
    """

    def __init__(self, nodes: Iterable[TreeNode] = ()):
        self._nodes: list[TreeNode] = list(nodes)
        self._by_id: dict[str, TreeNode] = {}
        self._by_message_id: dict[str, TreeNode] = {}
        for node in self._nodes:
            self._by_id.setdefault(node.id, node)
            if node.message_id:
                self._by_message_id.setdefault(node.message_id, node)
        self.selected_path: list[str] = []

    @classmethod
    def for_conversation(cls, nodes: Iterable[TreeNode], conv_id: str) -> "BranchNavigator":
        """Build a navigator from the nodes belonging to conv_id."""
        accepted = {conv_id, _base_conversation_id(conv_id)}
        return cls(n for n in nodes if n.conversation_id in accepted)

    @property
    def has_tree(self) -> bool:
        return bool(self._nodes)

    @property
    def nodes(self) -> list[TreeNode]:
        return list(self._nodes)

    def _lookup(self, node_id: str | None) -> TreeNode | None:
        if not node_id:
            return None
        return self._by_id.get(node_id) or self._by_message_id.get(node_id)

    def resolve_path(self, target_id: str) -> list[str] | None:
        """Return node ids from the root down to target_id, or None if unknown.

        target_id may be a node id or a message id. The walk stops at a null
        or dangling parent.
        """
        node = self._lookup(target_id)
        if node is None:
            return None

        path: list[str] = []
        seen: set[str] = set()
        while node is not None and node.id not in seen:
            seen.add(node.id)
            path.insert(0, node.id)
            node = self._by_id.get(node.parent_id) if node.parent_id else None
        return path

    def select(self, target_id: str) -> list[str]:
        """Select the branch ending at target_id.

        An unresolvable id leaves the current selection untouched.
        """
        path = self.resolve_path(target_id)
        if path is None:
            logger.warning(f"Could not find branch node {target_id!r}; keeping current branch")
            return self.selected_path
        self.selected_path = path
        return path

    def clear(self):
        self.selected_path = []

    def message_ids_for_path(self, path: list[str]) -> set[str]:
        """Message ids on the path plus the first-child continuation below it."""
        message_ids: set[str] = set()
        seen: set[str] = set()
        last: TreeNode | None = None
        for node_id in path:
            node = self._lookup(node_id)
            if node is None:
                continue
            if node.message_id:
                message_ids.add(node.message_id)
            seen.add(node.id)
            last = node

        while last is not None and last.children_ids:
            child = self._lookup(last.children_ids[0])
            if child is None or child.id in seen:
                break
            seen.add(child.id)
            if child.message_id:
                message_ids.add(child.message_id)
            last = child
        return message_ids

    def filter_messages(self, messages: list[Message]) -> list[Message]:
        """Restrict messages to the selected branch, if any."""
        if not self.has_tree or not self.selected_path:
            return messages
        member_ids = self.message_ids_for_path(self.selected_path)
        if not member_ids:
            return messages
        return [m for m in messages if m.message_id in member_ids]

    @property
    def branch_filtered(self) -> bool:
        return self.has_tree and bool(self.selected_path)

    def branch_points(self) -> list[TreeNode]:
        return [n for n in self._nodes if n.is_branch_point]

    def stats(self) -> TreeStats:
        return TreeStats(
            node_count=len(self._nodes),
            root_count=sum(1 for n in self._nodes if n.is_root or not n.parent_id),
            max_depth=max((n.depth for n in self._nodes), default=0),
            branch_point_count=len(self.branch_points()),
        )
