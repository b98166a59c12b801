from .manager import (
    MAX_WALK,
    BranchComparison,
    BranchManager,
    BranchRejection,
    BranchResult,
    make_branch_id,
)
from .tree import BranchNode, build_branch_tree, flatten

__all__ = [
    "MAX_WALK",
    "BranchComparison",
    "BranchManager",
    "BranchRejection",
    "BranchResult",
    "make_branch_id",
    "BranchNode",
    "build_branch_tree",
    "flatten",
]
