from __future__ import annotations

from dataclasses import dataclass
import math
from types import MappingProxyType
from typing import Any, Mapping, Union

import numpy as np

from errors import TypeMismatchError

NUMERIC_TYPES = frozenset({"double", "float", "integer"})
DATA_TYPES = NUMERIC_TYPES | {"string", "boolean"}

_TRUE_LITERALS = frozenset({"true", "1"})
_FALSE_LITERALS = frozenset({"false", "0"})


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Missing:
    pass


MISSING = Missing()

FeatureValue = Union[Number, Text, Missing]
FeatureSet = Mapping[str, FeatureValue]


def to_feature_value(value: Any, field: str | None = None) -> FeatureValue:
    """Tag one raw caller value.

    None and non-finite numbers are treated as missing, the same way
    non-finite inputs end up in the missing bin during training.
    """
    if isinstance(value, (Number, Text, Missing)):
        return value
    if value is None:
        return MISSING
    if isinstance(value, (bool, np.bool_)):
        return Number(1.0 if value else 0.0)
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        if not math.isfinite(number):
            return MISSING
        return Number(number)
    if isinstance(value, str):
        return Text(value)
    raise TypeMismatchError(
        f"unsupported feature value of type {type(value).__name__}",
        field=field,
    )


def freeze_features(features: Mapping[str, Any]) -> FeatureSet:
    """Build the read-only feature set used for one scoring call."""
    tagged = {name: to_feature_value(value, field=name) for name, value in features.items()}
    return MappingProxyType(tagged)


def lookup(features: FeatureSet, field: str) -> FeatureValue:
    return features.get(field, MISSING)


def _parse_number(text: str, data_type: str, field: str) -> float:
    # Non-finite text is rejected: only absent values count as missing.
    literal = text.strip()
    try:
        if "_" in literal:
            raise ValueError(literal)
        number = float(literal)
    except ValueError as e:
        raise TypeMismatchError(
            f"cannot compare {text!r} as {data_type}",
            field=field,
        ) from e
    if not math.isfinite(number):
        raise TypeMismatchError(
            f"non-finite value {text!r} supplied for a {data_type} field",
            field=field,
        )
    return number


def coerce(value: FeatureValue, data_type: str, field: str) -> float | str | bool:
    """Convert a present feature value to the predicate's declared type."""
    if isinstance(value, Missing):
        raise ValueError("missing values have no typed representation")

    if data_type in NUMERIC_TYPES:
        if isinstance(value, Number):
            number = value.value
        else:
            number = _parse_number(value.value, data_type, field)
        if data_type == "integer" and not number.is_integer():
            raise TypeMismatchError(
                f"value {value.value!r} is not an integer",
                field=field,
            )
        return number

    if data_type == "string":
        if isinstance(value, Text):
            return value.value
        raise TypeMismatchError(
            f"numeric value {value.value!r} supplied for a string field",
            field=field,
        )

    if data_type == "boolean":
        if isinstance(value, Number):
            if value.value in (0.0, 1.0):
                return value.value == 1.0
        else:
            literal = value.value.strip().lower()
            if literal in _TRUE_LITERALS:
                return True
            if literal in _FALSE_LITERALS:
                return False
        raise TypeMismatchError(
            f"cannot compare {value.value!r} as boolean",
            field=field,
        )

    raise ValueError(f"Unsupported data type: {data_type}")


def parse_literal(literal: str, data_type: str) -> float | str | bool:
    """Parse a reference value written in a model document."""
    if data_type in NUMERIC_TYPES:
        return float(literal)
    if data_type == "boolean":
        lowered = literal.strip().lower()
        if lowered in _TRUE_LITERALS:
            return True
        if lowered in _FALSE_LITERALS:
            return False
        raise ValueError(f"invalid boolean literal: {literal!r}")
    if data_type == "string":
        return literal
    raise ValueError(f"Unsupported data type: {data_type}")


def normalize_reference(value: Any, data_type: str) -> float | str | bool:
    """Check a predicate's reference value against its declared type.

    String values are parsed as literals; other values must already have the
    Python type the data type compares as.
    """
    if isinstance(value, str):
        normalized = parse_literal(value, data_type)
    elif data_type in NUMERIC_TYPES and isinstance(
        value, (int, float, np.integer, np.floating)
    ) and not isinstance(value, (bool, np.bool_)):
        normalized = float(value)
    elif data_type == "boolean" and isinstance(value, (bool, np.bool_)):
        normalized = bool(value)
    else:
        raise ValueError(f"reference value {value!r} is not a valid {data_type}")

    if isinstance(normalized, float) and not math.isfinite(normalized):
        raise ValueError(f"reference value {value!r} is not finite")
    return normalized


def format_score(score: float) -> str:
    """Canonical tally key for a leaf score: shortest round-trip decimal, no exponent."""
    return np.format_float_positional(float(score), trim="-")
