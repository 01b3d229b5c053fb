from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import operator
from typing import Union

from feature_values import (
    DATA_TYPES,
    FeatureSet,
    Missing,
    coerce,
    lookup,
    normalize_reference,
)


class Truth(Enum):
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, flag: bool) -> "Truth":
        return cls.TRUE if flag else cls.FALSE


_COMPARISONS = {
    "equal": operator.eq,
    "notEqual": operator.ne,
    "lessThan": operator.lt,
    "lessOrEqual": operator.le,
    "greaterThan": operator.gt,
    "greaterOrEqual": operator.ge,
}
_PRESENCE_OPERATORS = frozenset({"isMissing", "isNotMissing"})
SIMPLE_OPERATORS = frozenset(_COMPARISONS) | _PRESENCE_OPERATORS
SET_OPERATORS = frozenset({"isIn", "isNotIn"})
BOOLEAN_OPERATORS = frozenset({"and", "or", "xor", "surrogate"})


@dataclass(frozen=True)
class SimplePredicate:
    field: str
    operator: str
    value: float | str | bool | None = None
    data_type: str = "double"

    def __post_init__(self) -> None:
        if self.operator not in SIMPLE_OPERATORS:
            raise ValueError(f"Unsupported simple predicate operator: {self.operator}")
        if self.data_type not in DATA_TYPES:
            raise ValueError(f"Unsupported data type: {self.data_type}")
        if self.operator not in _PRESENCE_OPERATORS and self.value is None:
            raise ValueError(f"operator {self.operator} requires a reference value")
        if self.value is not None:
            object.__setattr__(self, "value", normalize_reference(self.value, self.data_type))

    def evaluate(self, features: FeatureSet) -> Truth:
        feature = lookup(features, self.field)
        missing = isinstance(feature, Missing)

        if self.operator == "isMissing":
            return Truth.of(missing)
        if self.operator == "isNotMissing":
            return Truth.of(not missing)
        if missing:
            return Truth.UNKNOWN

        actual = coerce(feature, self.data_type, self.field)
        return Truth.of(_COMPARISONS[self.operator](actual, self.value))


@dataclass(frozen=True)
class SimpleSetPredicate:
    field: str
    operator: str
    values: frozenset
    data_type: str = "string"

    def __post_init__(self) -> None:
        if self.operator not in SET_OPERATORS:
            raise ValueError(f"Unsupported set predicate operator: {self.operator}")
        if self.data_type not in DATA_TYPES:
            raise ValueError(f"Unsupported data type: {self.data_type}")
        object.__setattr__(
            self,
            "values",
            frozenset(normalize_reference(value, self.data_type) for value in self.values),
        )

    def evaluate(self, features: FeatureSet) -> Truth:
        feature = lookup(features, self.field)
        if isinstance(feature, Missing):
            return Truth.UNKNOWN

        member = coerce(feature, self.data_type, self.field) in self.values
        return Truth.of(member if self.operator == "isIn" else not member)


@dataclass(frozen=True)
class CompoundPredicate:
    operator: str
    children: tuple

    def __post_init__(self) -> None:
        if self.operator not in BOOLEAN_OPERATORS:
            raise ValueError(f"Unsupported compound operator: {self.operator}")
        object.__setattr__(self, "children", tuple(self.children))
        if not self.children:
            raise ValueError("compound predicate needs at least one child")

    def evaluate(self, features: FeatureSet) -> Truth:
        if self.operator == "and":
            return self._short_circuit(features, stop_at=Truth.FALSE)
        if self.operator == "or":
            return self._short_circuit(features, stop_at=Truth.TRUE)
        if self.operator == "xor":
            return self._xor(features)
        return self._surrogate(features)

    def _short_circuit(self, features: FeatureSet, stop_at: Truth) -> Truth:
        # and stops at the first FALSE, or at the first TRUE
        saw_unknown = False
        for child in self.children:
            result = child.evaluate(features)
            if result is stop_at:
                return stop_at
            if result is Truth.UNKNOWN:
                saw_unknown = True
        if saw_unknown:
            return Truth.UNKNOWN
        return Truth.TRUE if stop_at is Truth.FALSE else Truth.FALSE

    def _xor(self, features: FeatureSet) -> Truth:
        parity = False
        saw_unknown = False
        for child in self.children:
            result = child.evaluate(features)
            if result is Truth.UNKNOWN:
                saw_unknown = True
            elif result is Truth.TRUE:
                parity = not parity
        if saw_unknown:
            return Truth.UNKNOWN
        return Truth.of(parity)

    def _surrogate(self, features: FeatureSet) -> Truth:
        for child in self.children:
            result = child.evaluate(features)
            if result is not Truth.UNKNOWN:
                return result
        return Truth.UNKNOWN


@dataclass(frozen=True)
class TruePredicate:
    def evaluate(self, features: FeatureSet) -> Truth:
        return Truth.TRUE


@dataclass(frozen=True)
class FalsePredicate:
    def evaluate(self, features: FeatureSet) -> Truth:
        return Truth.FALSE


Predicate = Union[
    SimplePredicate,
    SimpleSetPredicate,
    CompoundPredicate,
    TruePredicate,
    FalsePredicate,
]

ALWAYS_TRUE = TruePredicate()
ALWAYS_FALSE = FalsePredicate()


def evaluate(predicate: Predicate, features: FeatureSet) -> Truth:
    """Decide a predicate against one frozen feature set.

    Raises TypeMismatchError when a present value cannot be read as the
    predicate's data type; absence of a value yields Truth.UNKNOWN.
    """
    return predicate.evaluate(features)
