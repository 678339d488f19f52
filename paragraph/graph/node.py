"""Lightweight node identities: a (type, index) pair."""

from __future__ import annotations
from enum import Enum
import numbers

from ..exceptions import ensure


class NodeType(Enum):
    VARIABLE = 0
    OPERATION = 1


class Node:
    """
    Identity of a node in a graph: either a variable or an operation.

    The index is dense within its type and is used directly as a list index
    into the graph's records. Nodes are ordered with every variable before
    every operation, then by index.

    Only construct nodes through Variable and Operation.
    """

    __slots__ = ("type", "index")

    def __init__(self, node_type: NodeType, index: int):
        ensure(
            isinstance(index, numbers.Integral) and not isinstance(index, bool),
            "Node index must be an integer, got ", type(index).__name__,
        )
        self.type = node_type
        self.index = int(index)

    @property
    def is_variable(self) -> bool:
        return self.type is NodeType.VARIABLE

    @property
    def is_operation(self) -> bool:
        return self.type is NodeType.OPERATION

    def _key(self):
        return (self.type.value, self.index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: 'Node') -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() < other._key()

    def __le__(self, other: 'Node') -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() <= other._key()

    def __gt__(self, other: 'Node') -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() > other._key()

    def __ge__(self, other: 'Node') -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() >= other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        kind = "Variable" if self.is_variable else "Operation"
        return f"{kind}({self.index})"


class Variable(Node):
    """A graph leaf: a slot for an externally supplied tensor."""

    __slots__ = ()

    def __init__(self, index: int):
        super().__init__(NodeType.VARIABLE, index)


class Operation(Node):
    """An internal node: a differentiable function applied to earlier nodes."""

    __slots__ = ()

    def __init__(self, index: int):
        super().__init__(NodeType.OPERATION, index)
