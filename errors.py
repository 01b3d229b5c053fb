from __future__ import annotations


class ForestScoringError(Exception):
    """Base error for a failed scoring call.

    Carries optional context describing where in the forest the failure
    happened so that callers can build a useful message.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        node_path: str | None = None,
        tree_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.node_path = node_path
        self.tree_index = tree_index

    def __str__(self) -> str:
        context = []
        if self.tree_index is not None:
            context.append(f"tree={self.tree_index}")
        if self.node_path is not None:
            context.append(f"node={self.node_path}")
        if self.field is not None:
            context.append(f"field={self.field!r}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class TypeMismatchError(ForestScoringError):
    """Feature value cannot be coerced to the type a predicate expects."""


class NoMatchingBranchError(ForestScoringError):
    """No child predicate of an internal node matched the feature set."""


class EmptyForestError(ForestScoringError):
    """A probability was requested from a forest without trees."""


class ModelDecodeError(ForestScoringError):
    """The PMML document is malformed or uses an unsupported construct."""
