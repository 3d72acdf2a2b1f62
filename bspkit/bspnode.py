"""BSP tree node and tree traversal helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import numpy as np

from .geometry import Side


@dataclass(eq=False)
class BSPNode:
    """A node of a BSP tree.

    Interior nodes carry a splitting ``plane`` and two children; leaves have
    ``leaf`` set to ``Side.UNDER`` (solid) or ``Side.OVER`` (empty).
    """

    plane: np.ndarray = field(default_factory=lambda: np.zeros(4))
    under: Optional["BSPNode"] = None
    over: Optional["BSPNode"] = None
    leaf: Side = Side.COPLANAR
    convex: Any = None
    brep: list = field(default_factory=list)

    def __post_init__(self) -> None:
        self.plane = np.asarray(self.plane, dtype=float).copy()
        self.leaf = Side(self.leaf)

    @property
    def normal(self) -> np.ndarray:
        return self.plane[:3]

    @property
    def dist(self) -> float:
        return float(self.plane[3])

    def is_leaf(self) -> bool:
        return self.leaf != Side.COPLANAR


def tree_traverse(root: Optional[BSPNode]) -> Iterator[BSPNode]:
    """Pre-order walk, visiting the over subtree before the under subtree.

    Children are read after the caller has handled a node, so a node may be
    modified (children swapped, say) while the walk is in progress.
    """
    stack = [root] if root is not None else []
    while stack:
        node = stack.pop()
        yield node
        if node.under is not None:
            stack.append(node.under)
        if node.over is not None:
            stack.append(node.over)


def _side_of(node: BSPNode, point: np.ndarray) -> bool:
    return float(np.dot(node.plane[:3], point) + node.plane[3]) > 0.0


def tree_back_to_front(root: Optional[BSPNode], point) -> Iterator[BSPNode]:
    """In-order walk yielding nodes from far to near as seen from ``point``."""
    p = np.asarray(point, dtype=float)
    stack: list[BSPNode] = []

    def to_leaf(node: Optional[BSPNode]) -> None:
        while node is not None:
            stack.append(node)
            node = node.under if _side_of(node, p) else node.over

    to_leaf(root)
    while stack:
        node = stack.pop()
        yield node
        to_leaf(node.over if _side_of(node, p) else node.under)


def bsp_count(node: Optional[BSPNode]) -> int:
    """Number of nodes in the tree."""
    if node is None:
        return 0
    return 1 + bsp_count(node.under) + bsp_count(node.over)