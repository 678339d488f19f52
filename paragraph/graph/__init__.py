"""Graph data model, builder and evaluation engine."""

from .node import NodeType, Node, Variable, Operation
from .function import TensorFunction, Derivative
from .records import VariableRecord, OperationRecord
from .builder import GraphBuilder
from .graph import Graph

__all__ = [
    'NodeType',
    'Node',
    'Variable',
    'Operation',
    'TensorFunction',
    'Derivative',
    'VariableRecord',
    'OperationRecord',
    'GraphBuilder',
    'Graph',
]
