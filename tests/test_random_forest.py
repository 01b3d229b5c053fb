import time

import numpy as np
import pytest

from data_structures import Node, Tree
from errors import EmptyForestError, NoMatchingBranchError, TypeMismatchError
from predicates import ALWAYS_FALSE, ALWAYS_TRUE, SimplePredicate, Truth
from random_forest import ForestParams, RandomForest


def _threshold_tree(threshold, low=1.0, high=0.0, field="x"):
    return Tree(
        root=Node(
            children=(
                Node(predicate=SimplePredicate(field, "lessOrEqual", threshold), score=low),
                Node(predicate=ALWAYS_TRUE, score=high),
            )
        )
    )


def _three_tree_forest(**params):
    # For x=5 the leaves are 1.0, 1.0, 0.0.
    return RandomForest(
        trees=(_threshold_tree(10.0), _threshold_tree(7.0), _threshold_tree(3.0)),
        params=ForestParams(**params),
    )


def _broken_tree():
    return Tree(root=Node(children=(Node(predicate=ALWAYS_FALSE, score=1.0),)))


def _random_node(rng, predicate, depth, max_depth, n_features, n_labels):
    if depth == max_depth or (depth > 0 and rng.uniform() < 0.2):
        return Node(predicate=predicate, score=float(rng.integers(0, n_labels)))

    field = f"f{int(rng.integers(0, n_features))}"
    threshold = float(np.round(rng.normal(), 3))
    split = SimplePredicate(field, "lessOrEqual", threshold)
    return Node(
        predicate=predicate,
        children=(
            _random_node(rng, split, depth + 1, max_depth, n_features, n_labels),
            _random_node(rng, ALWAYS_TRUE, depth + 1, max_depth, n_features, n_labels),
        ),
    )


def _random_forest(seed, n_trees=40, max_depth=5, n_features=6, n_labels=3):
    rng = np.random.default_rng(seed)
    trees = tuple(
        Tree(root=_random_node(rng, ALWAYS_TRUE, 0, max_depth, n_features, n_labels))
        for _ in range(n_trees)
    )
    return RandomForest(trees=trees, params=ForestParams(max_workers=8))


def test_three_tree_vote_scenario():
    forest = _three_tree_forest()
    features = {"x": 5}

    assert forest.label_scores(features) == {"1": 2.0, "0": 1.0}
    assert forest.score(features, "1") == pytest.approx(2.0 / 3.0)
    assert forest.score(features, "0") == pytest.approx(1.0 / 3.0)
    assert forest.score(features, "2") == 0.0


def test_concurrent_scoring_matches_sequential():
    forest = _three_tree_forest(max_workers=2)
    features = {"x": 5}

    sequential = forest.label_scores(features)
    concurrent = forest.label_scores_concurrently(features)
    assert concurrent == sequential
    assert list(concurrent) == list(sequential)
    assert forest.score_concurrently(features, "1") == forest.score(features, "1")
    assert forest.score_concurrently(features, "2") == 0.0


@pytest.mark.parametrize("x", [-1.0, 2.5, 5.0, 8.0, 12.0])
def test_votes_sum_to_tree_count(x):
    forest = _three_tree_forest()
    assert sum(forest.label_scores({"x": x}).values()) == len(forest.trees)


@pytest.mark.parametrize("label", ["0", "1", "2"])
def test_score_is_label_share_of_votes(label):
    forest = _three_tree_forest()
    scores = forest.label_scores({"x": 5})
    assert forest.score({"x": 5}, label) == scores.get(label, 0.0) / sum(scores.values())


def test_random_forests_agree_under_parallelism():
    forest = _random_forest(seed=5)
    rng = np.random.default_rng(6)

    for _ in range(25):
        features = {f"f{i}": float(v) for i, v in enumerate(rng.normal(size=6))}
        sequential = forest.label_scores(features)
        concurrent = forest.label_scores_concurrently(features)

        assert concurrent == sequential
        assert list(concurrent) == list(sequential)
        assert sum(sequential.values()) == len(forest)


def test_failing_tree_aborts_sequential_and_concurrent_scoring():
    forest = RandomForest(trees=(_threshold_tree(10.0), _broken_tree(), _threshold_tree(3.0)))

    with pytest.raises(NoMatchingBranchError) as excinfo:
        forest.label_scores({"x": 5})
    assert excinfo.value.tree_index == 1

    with pytest.raises(NoMatchingBranchError) as excinfo:
        forest.label_scores_concurrently({"x": 5})
    assert excinfo.value.tree_index == 1

    with pytest.raises(NoMatchingBranchError):
        forest.score({"x": 5}, "1")
    with pytest.raises(NoMatchingBranchError):
        forest.score_concurrently({"x": 5}, "1")


def test_every_failing_tree_still_surfaces_an_error():
    forest = RandomForest(trees=tuple(_broken_tree() for _ in range(6)))
    with pytest.raises(NoMatchingBranchError) as excinfo:
        forest.label_scores_concurrently({})
    assert excinfo.value.tree_index in range(6)


def test_type_mismatch_aborts_whole_forest():
    forest = _three_tree_forest()
    with pytest.raises(TypeMismatchError) as excinfo:
        forest.label_scores({"x": "five"})
    assert excinfo.value.tree_index == 0
    assert excinfo.value.field == "x"

    with pytest.raises(TypeMismatchError):
        forest.label_scores_concurrently({"x": "five"})


def test_missing_feature_is_not_a_zero_score():
    forest = RandomForest(
        trees=(
            Tree(
                root=Node(
                    children=(
                        Node(predicate=SimplePredicate("x", "lessOrEqual", 1.0), score=1.0),
                        Node(predicate=SimplePredicate("x", "greaterThan", 1.0), score=0.0),
                    )
                )
            ),
        )
    )
    with pytest.raises(NoMatchingBranchError):
        forest.score({}, "0")


def test_empty_forest():
    forest = RandomForest(trees=())

    assert forest.label_scores({"x": 1}) == {}
    assert forest.label_scores_concurrently({"x": 1}) == {}
    with pytest.raises(EmptyForestError):
        forest.score({"x": 1}, "1")
    with pytest.raises(EmptyForestError):
        forest.score_concurrently({"x": 1}, "1")


def test_single_leaf_tree_forest():
    forest = RandomForest(trees=(Tree(root=Node(score=2.0)),))
    assert forest.label_scores({}) == {"2": 1.0}
    assert forest.score({}, "2") == 1.0


def test_caller_features_are_left_untouched():
    features = {"x": 5, "unused": None}
    _three_tree_forest().label_scores_concurrently(features)
    assert features == {"x": 5, "unused": None}


def test_forest_params_validation():
    with pytest.raises(ValueError):
        ForestParams(max_workers=0)
    forest = _three_tree_forest(max_workers=1)
    assert forest.label_scores_concurrently({"x": 5}) == {"1": 2.0, "0": 1.0}


class _RecordingPredicate:
    """Sleeps, records which tree evaluated it, then returns a fixed result."""

    def __init__(self, tree_id, calls, result=Truth.TRUE, delay=0.0):
        self.tree_id = tree_id
        self.calls = calls
        self.result = result
        self.delay = delay

    def evaluate(self, features):
        time.sleep(self.delay)
        self.calls.append(self.tree_id)
        return self.result


def _recording_tree(tree_id, calls, result=Truth.TRUE, delay=0.0):
    predicate = _RecordingPredicate(tree_id, calls, result=result, delay=delay)
    return Tree(root=Node(children=(Node(predicate=predicate, score=float(tree_id % 2)),)))


def test_concurrent_scoring_walks_every_tree_once():
    calls = []
    forest = RandomForest(
        trees=tuple(_recording_tree(i, calls, delay=0.01 * (i % 3)) for i in range(12)),
        params=ForestParams(max_workers=4),
    )

    assert forest.label_scores_concurrently({}) == {"0": 6.0, "1": 6.0}
    assert sorted(calls) == list(range(12))


def test_concurrent_failure_waits_for_every_tree():
    calls = []
    trees = [_recording_tree(0, calls, result=Truth.FALSE)]
    trees.extend(_recording_tree(i, calls, delay=0.05) for i in range(1, 6))
    forest = RandomForest(trees=tuple(trees), params=ForestParams(max_workers=6))

    with pytest.raises(NoMatchingBranchError) as excinfo:
        forest.label_scores_concurrently({})

    assert excinfo.value.tree_index == 0
    # the slow trees had all finished by the time the error surfaced
    assert sorted(calls) == list(range(6))


def test_feature_domains_cover_every_split_field():
    forest = _random_forest(seed=9, n_features=4)
    domains = forest.feature_domains()

    assert set(domains) <= {"f0", "f1", "f2", "f3"}
    for data_type, refs in domains.values():
        assert data_type == "double"
        assert refs
        assert len(set(refs)) == len(refs)

    features = {name: refs[0] for name, (_, refs) in domains.items()}
    assert sum(forest.label_scores(features).values()) == len(forest)
