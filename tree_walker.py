from __future__ import annotations

import logging
from typing import Any, Mapping

from data_structures import Node, Tree
from errors import ForestScoringError, NoMatchingBranchError
from feature_values import FeatureSet, freeze_features
from predicates import Truth

logger = logging.getLogger(__name__)


def _label(node: Node, position: int | None) -> str:
    if node.node_id is not None:
        return node.node_id
    return "root" if position is None else str(position)


def _select_child(tree: Tree, node: Node, features: FeatureSet, path: list[str]) -> tuple[int, Node] | None:
    for position, child in enumerate(node.children):
        try:
            result = child.predicate.evaluate(features)
        except ForestScoringError as e:
            if e.node_path is None:
                e.node_path = "/".join(path + [_label(child, position)])
            raise

        if result is Truth.TRUE:
            return position, child
        if (
            result is Truth.UNKNOWN
            and tree.missing_value_strategy == "defaultChild"
            and node.default_child is not None
        ):
            return node.child_by_id(node.default_child)
    return None


def walk(tree: Tree, features: FeatureSet) -> float:
    """Descend one tree to a leaf against an already frozen feature set."""
    node = tree.root
    path = [_label(node, None)]

    while not node.is_leaf:
        selected = _select_child(tree, node, features, path)
        if selected is None:
            if tree.no_true_child_strategy == "returnLastPrediction" and node.score is not None:
                logger.debug("no true child at %s, returning last prediction", "/".join(path))
                return node.score
            raise NoMatchingBranchError(
                f"none of {len(node.children)} child predicates matched",
                node_path="/".join(path),
            )
        position, node = selected
        path.append(_label(node, position))

    return node.score


def traverse(tree: Tree, features: Mapping[str, Any]) -> float:
    """Return the leaf score the feature set reaches in ``tree``.

    Children are tried in declared order and the first predicate that
    evaluates true is followed. An unknown result never selects a branch,
    except through the node's default child when the tree declares the
    ``defaultChild`` missing-value strategy.

    Raises:
        TypeMismatchError: a feature cannot be read as a predicate's type.
        NoMatchingBranchError: an internal node has no viable child.
    """
    return walk(tree, freeze_features(features))
