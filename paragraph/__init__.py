"""
ParaGraph: Tensor Dependency Graphs
===================================

Describe a computation over dense tensors as a directed acyclic graph of
variables and operations, then evaluate any node or compute its exact
Jacobians with respect to a chosen set of variables.

Example:
    >>> import paragraph as pg
    >>> mb = pg.MLGraphBuilder()
    >>> w, x, b = mb.add_variable("w"), mb.add_variable("x"), mb.add_variable("b")
    >>> y = mb.add(mb.chain_multiplication(w, x, 1), b)
    >>> graph = mb.build_graph()
    >>> inputs = graph.create_variable_values({w: [[1., 2.]], x: [3., 4.], b: [0.5]})
    >>> graph.value(y, inputs)
    Tensor([11.5], dimensionalities=(1,))
"""

__version__ = "0.1.0"

from .exceptions import GraphError, ensure

# Tensors
from .core import (
    DTYPE,
    Tensor,
    compute_offset,
    compute_position,
    tensor,
    scalar,
    zeros,
    from_numpy,
    as_tensor,
    format_tensor,
)

# Graphs
from .graph import (
    NodeType,
    Node,
    Variable,
    Operation,
    TensorFunction,
    Derivative,
    GraphBuilder,
    Graph,
)

# Built-in functions and builders
from .functions import (
    Add,
    ChainMultiplication,
    Sigmoid,
    ReduceSum,
    Log,
    ElementWiseMultiplication,
    Negative,
    Softmax,
)
from .ml_graph import MLGraphBuilder
from .gradcheck import numerical_jacobian, check_gradients

__all__ = [
    '__version__',
    # Errors
    'GraphError',
    'ensure',
    # Tensors
    'DTYPE',
    'Tensor',
    'compute_offset',
    'compute_position',
    'tensor',
    'scalar',
    'zeros',
    'from_numpy',
    'as_tensor',
    'format_tensor',
    # Graphs
    'NodeType',
    'Node',
    'Variable',
    'Operation',
    'TensorFunction',
    'Derivative',
    'GraphBuilder',
    'Graph',
    # Functions
    'Add',
    'ChainMultiplication',
    'Sigmoid',
    'ReduceSum',
    'Log',
    'ElementWiseMultiplication',
    'Negative',
    'Softmax',
    'MLGraphBuilder',
    'numerical_jacobian',
    'check_gradients',
]
