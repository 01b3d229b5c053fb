"""
Data structures for tree-based models.

Immutable nodes and trees decoded once at load time and shared read-only
by every scoring call.
"""

from data_structures.node import Node, Tree

__all__ = ["Node", "Tree"]
