"""Per-node bookkeeping kept by GraphBuilder and snapshotted into a Graph."""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Sequence, Tuple

from .function import TensorFunction
from .node import Node


@dataclass
class VariableRecord:
    name: str
    index: int
    consumers: Sequence[int] = field(default_factory=list)
    # highest operation index that reads this node, -1 if nothing does
    most_recent_consumer: int = -1

    def add_consumer(self, operation_index: int) -> None:
        # An operation listing the same dependency twice is registered once.
        if not self.consumers or self.consumers[-1] != operation_index:
            self.consumers.append(operation_index)
        self.most_recent_consumer = operation_index

    def frozen(self) -> 'VariableRecord':
        return replace(self, consumers=tuple(self.consumers))


@dataclass
class OperationRecord:
    name: str
    index: int
    function: TensorFunction
    dependencies: Tuple[Node, ...]
    consumers: Sequence[int] = field(default_factory=list)
    most_recent_consumer: int = -1

    def add_consumer(self, operation_index: int) -> None:
        if not self.consumers or self.consumers[-1] != operation_index:
            self.consumers.append(operation_index)
        self.most_recent_consumer = operation_index

    def frozen(self) -> 'OperationRecord':
        return replace(self, consumers=tuple(self.consumers))
