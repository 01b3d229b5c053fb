import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np

# Allow running as: python experiments/forest_scoring_benchmark.py
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from data_structures import Node, Tree
from errors import ForestScoringError
from pmml_loader import load_random_forest
from predicates import ALWAYS_TRUE, SimplePredicate
from random_forest import ForestParams, RandomForest


def _synthetic_node(rng, predicate, depth, max_depth, n_features, n_labels):
    if depth == max_depth:
        return Node(predicate=predicate, score=float(rng.integers(0, n_labels)))

    split = SimplePredicate(
        field=f"f{int(rng.integers(0, n_features))}",
        operator="lessOrEqual",
        value=float(rng.normal()),
    )
    return Node(
        predicate=predicate,
        children=(
            _synthetic_node(rng, split, depth + 1, max_depth, n_features, n_labels),
            _synthetic_node(rng, ALWAYS_TRUE, depth + 1, max_depth, n_features, n_labels),
        ),
    )


def build_synthetic_forest(n_trees, max_depth, n_features, n_labels, max_workers, random_state):
    rng = np.random.default_rng(random_state)
    trees = tuple(
        Tree(root=_synthetic_node(rng, ALWAYS_TRUE, 0, max_depth, n_features, n_labels))
        for _ in range(n_trees)
    )
    return RandomForest(trees=trees, params=ForestParams(max_workers=max_workers))


def sample_features(rng, domains):
    """Draw one feature set from the fields and reference values the forest reads."""
    features = {}
    for name, (data_type, refs) in domains.items():
        if data_type == "boolean":
            features[name] = bool(rng.integers(0, 2))
        elif data_type == "string":
            if refs:
                features[name] = refs[int(rng.integers(0, len(refs)))]
        else:
            center = refs[int(rng.integers(0, len(refs)))] if refs else 0.0
            value = float(center + rng.normal())
            features[name] = float(np.round(value)) if data_type == "integer" else value
    return features


def time_scoring(score_fn, feature_sets):
    # A failed call is recorded by its error type so both paths can be compared.
    outcomes = []
    t0 = time.perf_counter()
    for features in feature_sets:
        try:
            outcomes.append(score_fn(features))
        except ForestScoringError as e:
            outcomes.append(type(e).__name__)
    return time.perf_counter() - t0, outcomes


def main():
    parser = argparse.ArgumentParser(description="Sequential vs concurrent random forest scoring")
    parser.add_argument("--pmml", type=str, default=None, help="PMML model to load instead of a synthetic forest")
    parser.add_argument("--n-trees", type=int, default=200)
    parser.add_argument("--max-depth", type=int, default=8)
    parser.add_argument("--n-features", type=int, default=20)
    parser.add_argument("--n-labels", type=int, default=2)
    parser.add_argument("--max-workers", type=int, default=None)
    parser.add_argument("--repeats", type=int, default=50)
    parser.add_argument("--random-state", type=int, default=0)
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    rng = np.random.default_rng(args.random_state)
    if args.pmml:
        forest = load_random_forest(args.pmml, params=ForestParams(max_workers=args.max_workers))
    else:
        forest = build_synthetic_forest(
            n_trees=args.n_trees,
            max_depth=args.max_depth,
            n_features=args.n_features,
            n_labels=args.n_labels,
            max_workers=args.max_workers,
            random_state=args.random_state,
        )

    depths = [tree.depth() for tree in forest.trees]
    nodes = [tree.node_count() for tree in forest.trees]
    print(
        f"Forest trees={len(forest)}"
        f" avg_depth={np.mean(depths):.1f}"
        f" avg_nodes={np.mean(nodes):.1f}"
    )

    domains = forest.feature_domains()
    print(f"Fields read by the forest: {len(domains)}")
    feature_sets = [sample_features(rng, domains) for _ in range(args.repeats)]

    seq_time, seq_outcomes = time_scoring(forest.label_scores, feature_sets)
    conc_time, conc_outcomes = time_scoring(forest.label_scores_concurrently, feature_sets)

    failures = sum(1 for outcome in seq_outcomes if isinstance(outcome, str))
    mismatches = sum(1 for a, b in zip(seq_outcomes, conc_outcomes) if a != b)
    print(f"sequential time={seq_time:.3f}s per_call={seq_time / args.repeats * 1e3:.2f}ms")
    print(f"concurrent time={conc_time:.3f}s per_call={conc_time / args.repeats * 1e3:.2f}ms")
    print(f"failed calls={failures} tally mismatches={mismatches}")
    if mismatches:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
