from __future__ import annotations

import logging
from pathlib import Path
import shlex
import xml.etree.ElementTree as ET

from data_structures import Node, Tree
from errors import ModelDecodeError
from feature_values import DATA_TYPES, parse_literal
from predicates import (
    ALWAYS_FALSE,
    ALWAYS_TRUE,
    CompoundPredicate,
    Predicate,
    SimplePredicate,
    SimpleSetPredicate,
)
from random_forest import ForestParams, RandomForest

logger = logging.getLogger(__name__)

PREDICATE_TAGS = frozenset(
    {"SimplePredicate", "SimpleSetPredicate", "CompoundPredicate", "True", "False"}
)

# nullPrediction has no separate code path: an unknown predicate never
# matches, so the walk ends in NoMatchingBranchError.
_MISSING_VALUE_STRATEGIES = {
    "none": "none",
    "nullPrediction": "none",
    "defaultChild": "defaultChild",
}
_ARRAY_TYPES = {"int": "integer", "real": "double", "string": "string"}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem if _local(child.tag) == name]


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    found = _children(elem, name)
    return found[0] if found else None


def _infer_type(literal: str) -> str:
    try:
        float(literal)
    except ValueError:
        return "string"
    return "double"


def _data_types(root: ET.Element) -> dict[str, str]:
    dictionary = _child(root, "DataDictionary")
    if dictionary is None:
        return {}

    types = {}
    for data_field in _children(dictionary, "DataField"):
        name = data_field.get("name")
        data_type = data_field.get("dataType")
        if name is not None and data_type in DATA_TYPES:
            types[name] = data_type
    return types


def _parse_value(literal: str, data_type: str, field: str) -> float | str | bool:
    try:
        return parse_literal(literal, data_type)
    except ValueError as e:
        raise ModelDecodeError(
            f"reference value {literal!r} is not a valid {data_type}",
            field=field,
        ) from e


def _decode_simple(elem: ET.Element, data_types: dict[str, str]) -> SimplePredicate:
    field = elem.get("field")
    op = elem.get("operator")
    if field is None or op is None:
        raise ModelDecodeError("SimplePredicate needs field and operator attributes")

    literal = elem.get("value")
    data_type = data_types.get(field) or ("double" if literal is None else _infer_type(literal))
    value = None if literal is None else _parse_value(literal, data_type, field)
    return SimplePredicate(field=field, operator=op, value=value, data_type=data_type)


def _decode_set(elem: ET.Element, data_types: dict[str, str]) -> SimpleSetPredicate:
    field = elem.get("field")
    op = elem.get("booleanOperator")
    array = _child(elem, "Array")
    if field is None or op is None or array is None:
        raise ModelDecodeError("SimpleSetPredicate needs field, booleanOperator and an Array")

    data_type = data_types.get(field) or _ARRAY_TYPES.get(array.get("type", "string"), "string")
    try:
        tokens = shlex.split(array.text or "")
    except ValueError as e:
        raise ModelDecodeError(f"malformed Array: {e}", field=field) from e
    values = frozenset(_parse_value(token, data_type, field) for token in tokens)
    return SimpleSetPredicate(field=field, operator=op, values=values, data_type=data_type)


def _decode_predicate(elem: ET.Element, data_types: dict[str, str]) -> Predicate:
    tag = _local(elem.tag)
    try:
        if tag == "True":
            return ALWAYS_TRUE
        if tag == "False":
            return ALWAYS_FALSE
        if tag == "SimplePredicate":
            return _decode_simple(elem, data_types)
        if tag == "SimpleSetPredicate":
            return _decode_set(elem, data_types)
        if tag == "CompoundPredicate":
            children = [
                _decode_predicate(child, data_types)
                for child in elem
                if _local(child.tag) in PREDICATE_TAGS
            ]
            return CompoundPredicate(operator=elem.get("booleanOperator", ""), children=children)
    except ValueError as e:
        raise ModelDecodeError(f"invalid {tag}: {e}") from e
    raise ModelDecodeError(f"unsupported predicate element: {tag}")


def _build_node(elem: ET.Element, children: tuple[Node, ...], data_types: dict[str, str]) -> Node:
    predicate_elems = [child for child in elem if _local(child.tag) in PREDICATE_TAGS]
    if not predicate_elems:
        raise ModelDecodeError("Node without predicate", node_path=elem.get("id"))

    raw_score = elem.get("score")
    try:
        score = None if raw_score is None else float(raw_score)
    except ValueError as e:
        raise ModelDecodeError(
            f"leaf score {raw_score!r} is not numeric",
            node_path=elem.get("id"),
        ) from e

    try:
        return Node(
            predicate=_decode_predicate(predicate_elems[0], data_types),
            score=score,
            children=children,
            node_id=elem.get("id"),
            default_child=elem.get("defaultChild"),
        )
    except ValueError as e:
        raise ModelDecodeError(str(e), node_path=elem.get("id")) from e


def _decode_node(root: ET.Element, data_types: dict[str, str]) -> Node:
    # Pre-order with an explicit stack; building in reverse visits every
    # child before its parent, so tree depth is not bounded by recursion.
    order = []
    stack = [root]
    while stack:
        elem = stack.pop()
        children = _children(elem, "Node")
        order.append((elem, children))
        stack.extend(children)

    decoded: dict[ET.Element, Node] = {}
    for elem, children in reversed(order):
        decoded[elem] = _build_node(
            elem,
            tuple(decoded.pop(child) for child in children),
            data_types,
        )
    return decoded[root]


def _decode_tree(elem: ET.Element, data_types: dict[str, str]) -> Tree:
    root = _child(elem, "Node")
    if root is None:
        raise ModelDecodeError("TreeModel without root Node")

    strategy = elem.get("missingValueStrategy", "none")
    if strategy not in _MISSING_VALUE_STRATEGIES:
        raise ModelDecodeError(f"unsupported missingValueStrategy: {strategy}")

    try:
        return Tree(
            root=_decode_node(root, data_types),
            missing_value_strategy=_MISSING_VALUE_STRATEGIES[strategy],
            no_true_child_strategy=elem.get("noTrueChildStrategy", "returnNullPrediction"),
            model_name=elem.get("modelName"),
        )
    except ValueError as e:
        raise ModelDecodeError(str(e)) from e


def _tree_models(root: ET.Element) -> tuple[list[ET.Element], str | None]:
    for elem in root:
        tag = _local(elem.tag)
        if tag == "MiningModel":
            segmentation = _child(elem, "Segmentation")
            if segmentation is None:
                raise ModelDecodeError("MiningModel without Segmentation")
            tree_models = [
                tree_model
                for segment in _children(segmentation, "Segment")
                for tree_model in _children(segment, "TreeModel")
            ]
            return tree_models, elem.get("modelName")
        if tag == "TreeModel":
            return [elem], elem.get("modelName")
    return [], None


def parse_random_forest(document: str | bytes, params: ForestParams | None = None) -> RandomForest:
    """Decode a PMML random forest (or a single TreeModel) into a RandomForest."""
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ModelDecodeError(f"malformed PMML document: {e}") from e
    if _local(root.tag) != "PMML":
        raise ModelDecodeError(f"expected a PMML root element, got {_local(root.tag)}")

    data_types = _data_types(root)
    tree_models, model_name = _tree_models(root)
    if not tree_models:
        raise ModelDecodeError("document contains no TreeModel")

    trees = tuple(_decode_tree(tree_model, data_types) for tree_model in tree_models)
    logger.info("decoded forest %s with %d trees", model_name or "<unnamed>", len(trees))
    return RandomForest(trees=trees, params=params or ForestParams(), model_name=model_name)


def load_random_forest(path: str | Path, params: ForestParams | None = None) -> RandomForest:
    path = Path(path)
    logger.info("loading PMML model from %s", path)
    return parse_random_forest(path.read_bytes(), params=params)
