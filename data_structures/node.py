from __future__ import annotations

from dataclasses import dataclass

from predicates import ALWAYS_TRUE, Predicate

MISSING_VALUE_STRATEGIES = frozenset({"none", "defaultChild"})
NO_TRUE_CHILD_STRATEGIES = frozenset({"returnNullPrediction", "returnLastPrediction"})


@dataclass(frozen=True)
class Node:
    predicate: Predicate = ALWAYS_TRUE
    score: float | None = None
    children: tuple[Node, ...] = ()
    node_id: str | None = None
    default_child: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))
        if not self.children and self.score is None:
            raise ValueError("leaf node must carry a score")
        if self.default_child is not None and not any(
            child.node_id == self.default_child for child in self.children
        ):
            raise ValueError(f"default child {self.default_child!r} is not a child of this node")

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def child_by_id(self, node_id: str) -> tuple[int, Node]:
        for position, child in enumerate(self.children):
            if child.node_id == node_id:
                return position, child
        raise KeyError(node_id)


@dataclass(frozen=True)
class Tree:
    root: Node
    missing_value_strategy: str = "none"
    no_true_child_strategy: str = "returnNullPrediction"
    model_name: str | None = None

    def __post_init__(self) -> None:
        if self.missing_value_strategy not in MISSING_VALUE_STRATEGIES:
            raise ValueError(
                "missing_value_strategy must be one of: none, defaultChild"
            )
        if self.no_true_child_strategy not in NO_TRUE_CHILD_STRATEGIES:
            raise ValueError(
                "no_true_child_strategy must be one of: returnNullPrediction, returnLastPrediction"
            )

    def depth(self) -> int:
        deepest = 0
        stack = [(self.root, 0)]
        while stack:
            node, level = stack.pop()
            deepest = max(deepest, level)
            stack.extend((child, level + 1) for child in node.children)
        return deepest

    def node_count(self) -> int:
        count = 0
        stack = [self.root]
        while stack:
            node = stack.pop()
            count += 1
            stack.extend(node.children)
        return count
