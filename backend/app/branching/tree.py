"""Branch tree assembly.

Turns are grouped by branch id and an adjacency index (parent branch -> child
branches) is built once per call. A branch hangs under the branch that owns
its parent message; a parent message on the trunk makes it a root. A parent
message that no longer exists makes it an orphan root.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from backend.app.integration.contracts import BranchRecord, Turn

PREVIEW_CHARS = 80


@dataclass
class BranchNode:
    branch_id: str
    parent_message_id: Optional[str]
    parent_branch_id: Optional[str]
    message_count: int
    created_at: Optional[datetime]
    preview: str = ""
    orphan: bool = False
    children: List["BranchNode"] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "parent_message_id": self.parent_message_id,
            "parent_branch_id": self.parent_branch_id,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "preview": self.preview,
            "orphan": self.orphan,
            "children": [child.as_dict() for child in self.children],
        }


def build_branch_tree(records: Iterable[BranchRecord], turns: Iterable[Turn]) -> List[BranchNode]:
    ordered = sorted(turns, key=lambda t: t.seq)
    owner_of: Dict[str, Optional[str]] = {t.id: t.branch_id for t in ordered}

    grouped: Dict[str, List[Turn]] = {}
    for turn in ordered:
        if turn.branch_id is not None:
            grouped.setdefault(turn.branch_id, []).append(turn)
    by_id: Dict[str, BranchRecord] = {r.id: r for r in records}

    nodes: Dict[str, BranchNode] = {}
    for branch_id in list(by_id) + [b for b in grouped if b not in by_id]:
        members = grouped.get(branch_id, [])
        record = by_id.get(branch_id)
        parent_message_id = members[0].parent_message_id if members and members[0].parent_message_id else None
        if parent_message_id is None and record is not None:
            parent_message_id = record.parent_message_id
        nodes[branch_id] = BranchNode(
            branch_id=branch_id,
            parent_message_id=parent_message_id,
            parent_branch_id=None,
            message_count=len(members),
            created_at=record.created_at if record else (members[0].created_at if members else None),
            preview=members[0].text[:PREVIEW_CHARS] if members else "",
        )

    children: Dict[str, List[str]] = {}
    roots: List[str] = []
    for branch_id, node in nodes.items():
        parent_msg = node.parent_message_id
        if parent_msg is None or parent_msg not in owner_of:
            node.orphan = parent_msg is not None
            roots.append(branch_id)
            continue
        parent_branch = owner_of[parent_msg]
        if parent_branch is None or parent_branch == branch_id or parent_branch not in nodes:
            node.orphan = parent_branch is not None
            roots.append(branch_id)
            continue
        node.parent_branch_id = parent_branch
        children.setdefault(parent_branch, []).append(branch_id)

    placed: Set[str] = set()

    def _attach(branch_id: str) -> BranchNode:
        placed.add(branch_id)
        node = nodes[branch_id]
        node.children = [_attach(child) for child in children.get(branch_id, []) if child not in placed]
        return node

    tree = [_attach(branch_id) for branch_id in roots]
    # Anything still unplaced sits on a parent cycle; surface it as an orphan root.
    for branch_id in nodes:
        if branch_id not in placed:
            nodes[branch_id].orphan = True
            nodes[branch_id].parent_branch_id = None
            tree.append(_attach(branch_id))
    return tree


def flatten(tree: Iterable[BranchNode]) -> List[BranchNode]:
    out: List[BranchNode] = []
    stack = list(tree)
    while stack:
        node = stack.pop(0)
        out.append(node)
        stack[0:0] = node.children
    return out


__all__ = ["BranchNode", "build_branch_tree", "flatten"]
