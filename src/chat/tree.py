from __future__ import annotations

from typing import Iterable, Mapping

from src.chat.types import Branch, BranchNode, Message


def build_branch_tree(
    branches: Iterable[Branch],
    messages: Mapping[str, Message],
) -> list[BranchNode]:
    """Link branches into a forest through the messages they forked from.

    A branch whose parent message, or the branch owning it, is not among the
    inputs becomes a root, as does any branch whose parent chain loops back to
    itself. Roots are ordered by ``created_at``; children keep input order.
    """
    branch_list = list(branches)
    nodes = {branch.id: BranchNode(branch=branch) for branch in branch_list}
    parent_of = {
        branch.id: _parent_branch_id(branch, messages, nodes) for branch in branch_list
    }
    cyclic = {branch_id for branch_id in parent_of if _in_cycle(branch_id, parent_of)}

    roots: list[BranchNode] = []
    for branch in branch_list:
        node = nodes[branch.id]
        parent_id = parent_of[branch.id]
        if parent_id is None or branch.id in cyclic:
            roots.append(node)
        else:
            nodes[parent_id].children.append(node)

    roots.sort(key=lambda node: node.branch.created_at)
    for root in roots:
        _assign_depths(root)
    return roots


def count_nodes(roots: Iterable[BranchNode]) -> int:
    return sum(1 for root in roots for _ in root.walk())


def _parent_branch_id(
    branch: Branch,
    messages: Mapping[str, Message],
    nodes: Mapping[str, BranchNode],
) -> str | None:
    if branch.is_root:
        return None
    parent_message = messages.get(branch.parent_message_id)
    if parent_message is None:
        return None
    if parent_message.branch_id not in nodes:
        return None
    return parent_message.branch_id


def _in_cycle(start: str, parent_of: Mapping[str, str | None]) -> bool:
    seen = {start}
    current = parent_of.get(start)
    while current is not None:
        if current == start:
            return True
        if current in seen:
            return False
        seen.add(current)
        current = parent_of.get(current)
    return False


def _assign_depths(root: BranchNode) -> None:
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        node.depth = depth
        for child in node.children:
            stack.append((child, depth + 1))
