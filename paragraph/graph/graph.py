"""
ParaGraph Graph - Evaluation Engine
===================================

An immutable dependency graph of variables and operations, with forward value
evaluation and forward-mode Jacobian composition.

Both algorithms walk operations in ascending index order, which is a
topological order because an operation can only depend on nodes created
before it. Each call keeps its intermediates in index-addressed slot lists
and drops a node's slot as soon as its most recent consumer has read it.
"""

from __future__ import annotations
from typing import Any, List, Mapping, Optional, Sequence, Tuple
import logging

from ..core.tensor import Tensor, as_tensor
from ..exceptions import GraphError, ensure
from .function import Derivative
from .node import Node, Variable, Operation
from .records import VariableRecord, OperationRecord

logger = logging.getLogger(__name__)

InputValues = Sequence[Optional[Tensor]]


class Graph:
    """
    A built, immutable graph.

    The graph holds the tensor functions but no tensors: inputs are supplied
    per call as a positional list with one slot per variable, usually built
    with create_variable_values(). Slots for variables that the requested
    output does not depend on may be left as None.

    Evaluation keeps no state on the graph, so a Graph can be evaluated from
    several threads at once.

    Graphs are created by GraphBuilder.build_graph().
    """

    def __init__(self, variables: Sequence[VariableRecord], operations: Sequence[OperationRecord]):
        self._variables: Tuple[VariableRecord, ...] = tuple(variables)
        self._operations: Tuple[OperationRecord, ...] = tuple(operations)

    @property
    def num_variables(self) -> int:
        return len(self._variables)

    @property
    def num_operations(self) -> int:
        return len(self._operations)

    # ------------------------------------------------------------------
    # Value
    # ------------------------------------------------------------------

    def value(self, output: Node, inputs: InputValues) -> Tensor:
        """Compute the value of ``output`` for the given input values."""
        self._check_node(output)
        if output.is_variable:
            return self._input(inputs, output.index)

        is_dependency = self._dependency_operations(output)
        storage: List[Optional[Tensor]] = [None] * len(self._operations)
        released = 0

        for index, op in enumerate(self._operations):
            if not is_dependency[index]:
                continue
            op_inputs = self._gather(op, inputs, storage)
            released += self._release(op, storage)
            storage[index] = op.function.value(op_inputs)

        logger.debug(
            "value(%r): evaluated %d of %d operations, released %d intermediates",
            output, sum(is_dependency), len(self._operations), released,
        )
        return storage[output.index]

    # ------------------------------------------------------------------
    # Partial gradient
    # ------------------------------------------------------------------

    def partial_gradient(self, output: Node, moving_variables: Sequence[Variable],
                         inputs: InputValues) -> Derivative:
        """
        Compute the value of ``output`` and its Jacobian with respect to each
        moving variable.

        The i-th Jacobian has shape
        moving_variables[i].dimensionalities + output.dimensionalities.

        Local Jacobians are composed forwards along the topological order.
        Only operations that some moving variable can reach are asked for a
        gradient; every other operation on the path is only evaluated.
        """
        self._check_node(output)
        moving_variables = list(moving_variables)
        for position, mv in enumerate(moving_variables):
            ensure(
                isinstance(mv, Node) and mv.is_variable and 0 <= mv.index < len(self._variables),
                "Moving variable ", position, " must be a variable of this graph, got ", mv,
            )

        if output.is_variable:
            return self._variable_gradient(output, moving_variables, inputs)

        # influenced[i][op]: op can be reached from the i-th moving variable
        consumer_cache: List[Optional[List[bool]]] = [None] * len(self._variables)
        influenced: List[List[bool]] = []
        for mv in moving_variables:
            if consumer_cache[mv.index] is None:
                consumer_cache[mv.index] = self._consumer_operations(mv)
            influenced.append(consumer_cache[mv.index])
        any_influenced = [any(column) for column in zip(*influenced)] if influenced \
            else [False] * len(self._operations)

        is_dependency = self._dependency_operations(output)
        values: List[Optional[Tensor]] = [None] * len(self._operations)
        # per operation, one Jacobian per moving variable; None is an implicit zero
        jacobians: List[Optional[List[Optional[Tensor]]]] = [None] * len(self._operations)
        released = 0
        differentiated = 0

        for index, op in enumerate(self._operations):
            if not is_dependency[index]:
                continue
            op_inputs = self._gather(op, inputs, values)
            if not any_influenced[index]:
                values[index] = op.function.value(op_inputs)
                jacobians[index] = [None] * len(moving_variables)
            else:
                differentiated += 1
                values[index], jacobians[index] = self._compose(
                    op, op_inputs, moving_variables, influenced, inputs, values, jacobians,
                )
            released += self._release(op, values, jacobians)

        logger.debug(
            "partial_gradient(%r): %d operations on path, %d differentiated, released %d intermediates",
            output, sum(is_dependency), differentiated, released,
        )

        out_value = values[output.index]
        result = []
        for mv, jacobian in zip(moving_variables, jacobians[output.index]):
            if jacobian is None:
                mv_dims = self._input(inputs, mv.index).dimensionalities
                jacobian = Tensor.zero_jacobian(out_value.dimensionalities, mv_dims)
            result.append(jacobian)
        return Derivative(out_value, result)

    def _variable_gradient(self, output: Node, moving_variables: List[Variable],
                           inputs: InputValues) -> Derivative:
        out_value = self._input(inputs, output.index)
        result = []
        for mv in moving_variables:
            if mv.index == output.index:
                result.append(Tensor.identity_jacobian(out_value.dimensionalities))
            else:
                mv_dims = self._input(inputs, mv.index).dimensionalities
                result.append(Tensor.zero_jacobian(out_value.dimensionalities, mv_dims))
        return Derivative(out_value, result)

    def _compose(self, op: OperationRecord, op_inputs: List[Tensor], moving_variables: List[Variable],
                 influenced: List[List[bool]], inputs: InputValues,
                 values: List[Optional[Tensor]],
                 jacobians: List[Optional[List[Optional[Tensor]]]]) -> Tuple[Tensor, List[Optional[Tensor]]]:
        """Chain rule for one operation: dO/dMV = sum over deps D of dD/dMV . dO/dD."""
        local = op.function.gradient(op_inputs)
        ensure(
            len(local.jacobians) == len(op.dependencies),
            "Operation '", op.name, "' returned ", len(local.jacobians), " Jacobians for ",
            len(op.dependencies), " inputs",
        )
        op_dims = local.value.dimensionalities

        op_jacobians: List[Optional[Tensor]] = []
        for i_mv, mv in enumerate(moving_variables):
            if not influenced[i_mv][op.index]:
                op_jacobians.append(None)
                continue
            mv_dims = self._input(inputs, mv.index).dimensionalities
            dO_dMV = Tensor.zero_jacobian(op_dims, mv_dims)
            for dep, dO_dD in zip(op.dependencies, local.jacobians):
                if dep.is_variable:
                    if dep.index == mv.index:
                        dO_dMV = Tensor.add(dO_dMV, dO_dD)
                    continue
                dD_dMV = jacobians[dep.index][i_mv]
                if dD_dMV is None:
                    continue
                dep_order = values[dep.index].ndim
                dO_dMV = Tensor.add(dO_dMV, Tensor.contract(dD_dMV, dO_dD, dep_order))
            op_jacobians.append(dO_dMV)
        return local.value, op_jacobians

    # ------------------------------------------------------------------
    # Traversals
    # ------------------------------------------------------------------

    def _dependency_operations(self, top: Node) -> List[bool]:
        """Operations that ``top`` transitively depends on, ``top`` included."""
        result = [False] * len(self._operations)
        if top.is_variable:
            return result
        stack = [top.index]
        while stack:
            index = stack.pop()
            if result[index]:
                continue
            result[index] = True
            for dep in self._operations[index].dependencies:
                if dep.is_operation and not result[dep.index]:
                    stack.append(dep.index)
        return result

    def _consumer_operations(self, bottom: Node) -> List[bool]:
        """Operations that transitively consume ``bottom``, excluding ``bottom`` itself."""
        result = [False] * len(self._operations)
        record = self._variables[bottom.index] if bottom.is_variable else self._operations[bottom.index]
        stack = list(record.consumers)
        while stack:
            index = stack.pop()
            if result[index]:
                continue
            result[index] = True
            for consumer in self._operations[index].consumers:
                if not result[consumer]:
                    stack.append(consumer)
        return result

    # ------------------------------------------------------------------
    # Slot handling
    # ------------------------------------------------------------------

    def _gather(self, op: OperationRecord, inputs: InputValues,
                values: List[Optional[Tensor]]) -> List[Tensor]:
        return [
            self._input(inputs, dep.index) if dep.is_variable else values[dep.index]
            for dep in op.dependencies
        ]

    def _release(self, op: OperationRecord, *tables: List[Any]) -> int:
        # Runs after the whole argument list is gathered, so an operation that
        # lists the same dependency twice still receives it twice.
        released = 0
        for dep in op.dependencies:
            if dep.is_operation and self._operations[dep.index].most_recent_consumer == op.index:
                if tables[0][dep.index] is not None:
                    released += 1
                for table in tables:
                    table[dep.index] = None
        return released

    def _input(self, inputs: InputValues, index: int) -> Tensor:
        ensure(
            index < len(inputs) and inputs[index] is not None,
            "No input value supplied for variable '", self._variables[index].name, "' (index ", index, ")",
        )
        value = inputs[index]
        ensure(
            isinstance(value, Tensor),
            "Input value for variable '", self._variables[index].name, "' must be a Tensor, got ",
            type(value).__name__,
        )
        return value

    def _check_node(self, node: Node) -> None:
        ensure(isinstance(node, Node), "Expected a Variable or Operation, got ", type(node).__name__)
        count = len(self._variables) if node.is_variable else len(self._operations)
        ensure(0 <= node.index < count, node, " does not belong to this graph")

    # ------------------------------------------------------------------
    # Inputs and diagnostics
    # ------------------------------------------------------------------

    def create_variable_values(self, input_value_map: Mapping[Variable, Any]) -> List[Optional[Tensor]]:
        """
        Turn a variable -> value mapping into the positional list that value()
        and partial_gradient() take. Unmapped variables are left as None.
        """
        result: List[Optional[Tensor]] = [None] * len(self._variables)
        for variable, tensor_value in input_value_map.items():
            ensure(
                isinstance(variable, Node) and variable.is_variable,
                "The input value map must have variables only, found ", variable,
            )
            ensure(
                0 <= variable.index < len(result),
                "The input value map has invalid variable index, expected [0, ", len(result),
                "), found ", variable.index,
            )
            result[variable.index] = as_tensor(tensor_value)
        return result

    def variable_name(self, variable: Variable) -> str:
        ensure(
            isinstance(variable, Node) and variable.is_variable and 0 <= variable.index < len(self._variables),
            "Cannot get name from variable ", variable,
        )
        return self._variables[variable.index].name

    def operation_name(self, operation: Operation) -> str:
        ensure(
            isinstance(operation, Node) and operation.is_operation
            and 0 <= operation.index < len(self._operations),
            "Cannot get name from operation ", operation,
        )
        return self._operations[operation.index].name

    def variable_by_name(self, name: str) -> Variable:
        """First variable with the given name."""
        for record in self._variables:
            if record.name == name:
                return Variable(record.index)
        raise GraphError(f"Could not find variable with name {name}")

    def operation_by_name(self, name: str) -> Operation:
        """First operation with the given name."""
        for record in self._operations:
            if record.name == name:
                return Operation(record.index)
        raise GraphError(f"Could not find operation with name {name}")

    def __repr__(self) -> str:
        return f"Graph(variables={len(self._variables)}, operations={len(self._operations)})"
