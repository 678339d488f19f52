"""
ParaGraph - ML Graph Builder
============================

A GraphBuilder wrapper with one method per built-in tensor function.
"""

from __future__ import annotations
from typing import Sequence

from . import functions
from .graph.builder import GraphBuilder
from .graph.function import TensorFunction
from .graph.graph import Graph
from .graph.node import Node, Variable, Operation


class MLGraphBuilder:
    """
    Builds graphs out of the functions in paragraph.functions.

    Operations added through the shortcut methods are named after the
    function plus a per-builder counter: add_1, sigmoid_2, ...

    Example:
        mb = MLGraphBuilder()
        w = mb.add_variable("w")
        x = mb.add_variable("x")
        b = mb.add_variable("b")
        y = mb.sigmoid(mb.add(mb.chain_multiplication(w, x, 1), b))
        graph = mb.build_graph()
    """

    def __init__(self, separator: str = "_"):
        self.separator = separator
        self._builder = GraphBuilder()
        self._counter = 0

    def add_variable(self, name: str) -> Variable:
        return self._builder.add_variable(name)

    def add_operation(self, name: str, function: TensorFunction, dependencies: Sequence[Node]) -> Operation:
        return self._builder.add_operation(name, function, dependencies)

    def add(self, lhs: Node, rhs: Node) -> Operation:
        return self.add_operation(self._uid("add"), functions.Add(), [lhs, rhs])

    def chain_multiplication(self, lhs: Node, rhs: Node, num_common_dims: int) -> Operation:
        return self.add_operation(
            self._uid("chain_multiplication"), functions.ChainMultiplication(num_common_dims), [lhs, rhs]
        )

    def sigmoid(self, node: Node) -> Operation:
        return self.add_operation(self._uid("sigmoid"), functions.Sigmoid(), [node])

    def reduce_sum(self, node: Node, axis: int) -> Operation:
        return self.add_operation(self._uid("reduce_sum"), functions.ReduceSum(axis), [node])

    def log(self, node: Node) -> Operation:
        return self.add_operation(self._uid("log"), functions.Log(), [node])

    def element_wise_multiplication(self, lhs: Node, rhs: Node) -> Operation:
        return self.add_operation(
            self._uid("element_wise_multiplication"), functions.ElementWiseMultiplication(), [lhs, rhs]
        )

    def negative(self, node: Node) -> Operation:
        return self.add_operation(self._uid("negative"), functions.Negative(), [node])

    def softmax(self, node: Node) -> Operation:
        return self.add_operation(self._uid("softmax"), functions.Softmax(), [node])

    def build_graph(self) -> Graph:
        return self._builder.build_graph()

    def _uid(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self.separator}{self._counter}"

    def __repr__(self) -> str:
        return f"MLGraphBuilder({self._builder!r})"
