"""
ParaGraph Graph - Builder
=========================

Bottom-up, append-only construction of a dependency graph.
"""

from __future__ import annotations
from typing import List, Sequence
import logging

from ..exceptions import ensure
from .function import TensorFunction
from .node import Node, Variable, Operation
from .records import VariableRecord, OperationRecord

logger = logging.getLogger(__name__)


class GraphBuilder:
    """
    Describes a graph before it is built.

    Variables can be added at any point, but an operation can only be added
    once all of its dependencies exist. Creation order is therefore always a
    valid topological order and cycles cannot be expressed.

    Usage:
        gb = GraphBuilder()
        w = gb.add_variable("w")
        x = gb.add_variable("x")
        wx = gb.add_operation("wx", ChainMultiplication(1), [w, x])
        graph = gb.build_graph()

    The builder stays usable after build_graph(); every call returns an
    independent snapshot that later additions do not affect.
    """

    def __init__(self):
        self._variables: List[VariableRecord] = []
        self._operations: List[OperationRecord] = []

    @property
    def num_variables(self) -> int:
        return len(self._variables)

    @property
    def num_operations(self) -> int:
        return len(self._operations)

    def add_variable(self, name: str) -> Variable:
        """
        Add a placeholder for an input tensor.

        The name is for diagnostics and need not be unique, unless the
        variable is to be looked up by name later.
        """
        record = VariableRecord(name=name, index=len(self._variables))
        self._variables.append(record)
        return Variable(record.index)

    def add_operation(self, name: str, function: TensorFunction, dependencies: Sequence[Node]) -> Operation:
        """
        Add an application of ``function`` to previously created nodes.

        ``dependencies`` are the function's inputs, in argument order.
        """
        ensure(
            isinstance(function, TensorFunction),
            "Operation '", name, "' needs a TensorFunction, got ", type(function).__name__,
        )
        dependencies = tuple(dependencies)
        for position, dep in enumerate(dependencies):
            self._check_exists(name, position, dep)

        index = len(self._operations)
        for dep in dependencies:
            self._record(dep).add_consumer(index)
        self._operations.append(
            OperationRecord(name=name, index=index, function=function, dependencies=dependencies)
        )
        return Operation(index)

    def build_graph(self) -> 'Graph':
        """Snapshot the described nodes into an immutable Graph."""
        from .graph import Graph

        logger.debug(
            "building graph with %d variables and %d operations",
            len(self._variables), len(self._operations),
        )
        return Graph(
            [v.frozen() for v in self._variables],
            [o.frozen() for o in self._operations],
        )

    def _check_exists(self, name: str, position: int, dep) -> None:
        ensure(
            isinstance(dep, Node) and isinstance(dep.index, int),
            "Dependency ", position, " of operation '", name, "' must be a Variable or Operation, got ",
            type(dep).__name__,
        )
        if dep.is_variable:
            ensure(
                0 <= dep.index < len(self._variables),
                "Dependency ", position, " of operation '", name, "' refers to variable ", dep.index,
                " which does not exist; ", len(self._variables), " variables have been added",
            )
        else:
            ensure(
                0 <= dep.index < len(self._operations),
                "Dependency ", position, " of operation '", name, "' refers to operation ", dep.index,
                " which does not exist yet; ", len(self._operations), " operations have been added",
            )

    def _record(self, node: Node):
        if node.is_variable:
            return self._variables[node.index]
        return self._operations[node.index]

    def __repr__(self) -> str:
        return f"GraphBuilder(variables={len(self._variables)}, operations={len(self._operations)})"
