from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import os
from typing import Any, Mapping

from data_structures import Tree
from errors import EmptyForestError, ForestScoringError
from feature_values import FeatureSet, format_score, freeze_features
from predicates import CompoundPredicate, SimplePredicate, SimpleSetPredicate
from tree_walker import walk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForestParams:
    max_workers: int | None = None  # None: one worker per tree, capped at cpu count

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError("max_workers must be positive")


def _tally(leaf_scores: list[float]) -> dict[str, float]:
    scores: dict[str, float] = {}
    for leaf_score in leaf_scores:
        key = format_score(leaf_score)
        scores[key] = scores.get(key, 0.0) + 1.0
    return scores


def _label_share(scores: dict[str, float], label: str) -> float:
    total = sum(scores.values())
    if total == 0.0:
        raise EmptyForestError("cannot score a forest without trees")
    return scores.get(label, 0.0) / total


@dataclass(frozen=True)
class RandomForest:
    """Ensemble of decision trees voting on a leaf label.

    The forest is immutable once built, so one instance can serve any number
    of concurrent scoring calls without locking.
    """

    trees: tuple[Tree, ...]
    params: ForestParams = field(default_factory=ForestParams)
    model_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "trees", tuple(self.trees))

    def __len__(self) -> int:
        return len(self.trees)

    def feature_domains(self) -> dict[str, tuple[str, tuple]]:
        """Fields read by the forest's predicates, with data type and reference values."""
        domains: dict[str, tuple[str, dict]] = {}

        def _add(name: str, data_type: str, values) -> None:
            _, seen = domains.setdefault(name, (data_type, {}))
            seen.update(dict.fromkeys(values))

        for tree in self.trees:
            nodes = [tree.root]
            while nodes:
                node = nodes.pop()
                nodes.extend(reversed(node.children))
                predicates = [node.predicate]
                while predicates:
                    predicate = predicates.pop()
                    if isinstance(predicate, CompoundPredicate):
                        predicates.extend(reversed(predicate.children))
                    elif isinstance(predicate, SimplePredicate):
                        refs = () if predicate.value is None else (predicate.value,)
                        _add(predicate.field, predicate.data_type, refs)
                    elif isinstance(predicate, SimpleSetPredicate):
                        _add(predicate.field, predicate.data_type, sorted(predicate.values, key=str))

        return {name: (data_type, tuple(seen)) for name, (data_type, seen) in domains.items()}

    def _walk_tree(self, tree_index: int, tree: Tree, features: FeatureSet) -> float:
        try:
            leaf_score = walk(tree, features)
        except ForestScoringError as e:
            if e.tree_index is None:
                e.tree_index = tree_index
            raise
        logger.debug("tree %d reached leaf %s", tree_index, leaf_score)
        return leaf_score

    def label_scores(self, features: Mapping[str, Any]) -> dict[str, float]:
        """Map each canonical leaf value to the number of trees that returned it.

        The first tree that fails aborts the whole call; no partial tally is
        returned.
        """
        frozen = freeze_features(features)
        leaf_scores = [
            self._walk_tree(tree_index, tree, frozen)
            for tree_index, tree in enumerate(self.trees)
        ]
        return _tally(leaf_scores)

    def score(self, features: Mapping[str, Any], label: str) -> float:
        """Share of trees voting for ``label``; 0.0 when no tree returned it.

        Raises EmptyForestError when the forest has no trees.
        """
        if not self.trees:
            raise EmptyForestError("cannot score a forest without trees")
        return _label_share(self.label_scores(features), label)

    def _resolve_workers(self) -> int:
        if self.params.max_workers is None:
            cpu = os.cpu_count() or 1
            return max(1, min(cpu, len(self.trees)))
        return max(1, min(self.params.max_workers, len(self.trees)))

    def label_scores_concurrently(self, features: Mapping[str, Any]) -> dict[str, float]:
        """Same as label_scores, with trees walked on a thread pool.

        Leaf scores are stored by tree position and tallied in tree order,
        so the result does not depend on completion order. The pool is fully
        joined before returning; if any tree fails, the first failure
        observed is raised and the remaining results are discarded.
        """
        if not self.trees:
            return {}

        frozen = freeze_features(features)
        workers = self._resolve_workers()
        logger.debug("scoring %d trees on %d workers", len(self.trees), workers)

        leaf_scores: list[float | None] = [None] * len(self.trees)
        first_error: ForestScoringError | None = None

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._walk_tree, tree_index, tree, frozen): tree_index
                for tree_index, tree in enumerate(self.trees)
            }
            for fut in as_completed(futures):
                try:
                    leaf_scores[futures[fut]] = fut.result()
                except ForestScoringError as e:
                    if first_error is None:
                        first_error = e
                    else:
                        logger.debug("discarding later failure: %s", e)

        if first_error is not None:
            raise first_error
        return _tally(leaf_scores)

    def score_concurrently(self, features: Mapping[str, Any], label: str) -> float:
        if not self.trees:
            raise EmptyForestError("cannot score a forest without trees")
        return _label_share(self.label_scores_concurrently(features), label)
