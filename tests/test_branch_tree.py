from __future__ import annotations

from unittest import TestCase

from src.chat.tree import build_branch_tree, count_nodes
from src.chat.types import Branch, Content, Message


def _message(message_id: str, branch_id: str) -> Message:
    return Message(
        id=message_id,
        thread_id="t1",
        branch_id=branch_id,
        role="user",
        content=Content(value=message_id),
        timestamp=1,
    )


def _branch(branch_id: str, parent_message_id: str | None, created_at: int) -> Branch:
    return Branch(
        id=branch_id,
        thread_id="t1",
        name=branch_id,
        created_at=created_at,
        parent_message_id=parent_message_id,
    )


class BranchTreeTests(TestCase):
    def test_empty_input_builds_empty_forest(self) -> None:
        self.assertEqual(build_branch_tree([], {}), [])

    def test_nested_branches_form_a_forest_with_depths(self) -> None:
        messages = {
            "m-main": _message("m-main", "main"),
            "m-a": _message("m-a", "a"),
            "m-b": _message("m-b", "b"),
        }
        branches = [
            _branch("c", "m-b", created_at=30),
            _branch("b", "m-a", created_at=20),
            _branch("a", "m-main", created_at=10),
            _branch("solo", None, created_at=5),
        ]

        roots = build_branch_tree(branches, messages)

        self.assertEqual([node.branch.id for node in roots], ["solo", "a"])
        self.assertEqual(count_nodes(roots), len(branches))
        branch_a = roots[1]
        self.assertEqual(branch_a.depth, 0)
        self.assertEqual([child.branch.id for child in branch_a.children], ["b"])
        self.assertEqual(branch_a.children[0].depth, 1)
        self.assertEqual(branch_a.children[0].children[0].branch.id, "c")
        self.assertEqual(branch_a.children[0].children[0].depth, 2)
        self.assertEqual([node.branch.id for node in branch_a.walk()], ["a", "b", "c"])

    def test_children_keep_input_order(self) -> None:
        messages = {"m-root": _message("m-root", "root")}
        branches = [
            _branch("root", None, created_at=1),
            _branch("late", "m-root", created_at=9),
            _branch("early", "m-root", created_at=2),
        ]

        roots = build_branch_tree(branches, messages)

        self.assertEqual([child.branch.id for child in roots[0].children], ["late", "early"])

    def test_branch_with_missing_parent_message_becomes_root(self) -> None:
        roots = build_branch_tree([_branch("orphan", "gone", created_at=1)], {})

        self.assertEqual(len(roots), 1)
        self.assertEqual(roots[0].branch.id, "orphan")
        self.assertEqual(roots[0].children, [])

    def test_parent_branch_outside_input_becomes_root(self) -> None:
        messages = {"m-x": _message("m-x", "not-listed")}

        roots = build_branch_tree([_branch("child", "m-x", created_at=1)], messages)

        self.assertEqual([node.branch.id for node in roots], ["child"])

    def test_cycles_are_broken_into_roots(self) -> None:
        messages = {
            "m-left": _message("m-left", "left"),
            "m-right": _message("m-right", "right"),
        }
        branches = [
            _branch("left", "m-right", created_at=2),
            _branch("right", "m-left", created_at=1),
        ]

        roots = build_branch_tree(branches, messages)

        self.assertEqual([node.branch.id for node in roots], ["right", "left"])
        self.assertEqual(count_nodes(roots), 2)
        self.assertTrue(all(node.depth == 0 for node in roots))
