"""
ParaGraph - Gradient Checking
=============================

Numerical verification of Graph.partial_gradient with central differences.
"""

from __future__ import annotations
from typing import List, Optional, Sequence
import logging

import numpy as np

from .core.tensor import Tensor, format_tensor
from .exceptions import ensure
from .graph.graph import Graph
from .graph.node import Node, Variable

logger = logging.getLogger(__name__)


def numerical_jacobian(
    graph: Graph,
    output: Node,
    variable: Variable,
    inputs: Sequence[Optional[Tensor]],
    eps: float = 1e-6,
) -> Tensor:
    """
    Central-difference Jacobian of ``output`` with respect to ``variable``.

    Returns a tensor of shape variable.dimensionalities + output.dimensionalities,
    the same layout as Graph.partial_gradient.
    """
    ensure(isinstance(variable, Node) and variable.is_variable, "Can only perturb variables, got ", variable)
    inputs = list(inputs)
    ensure(
        variable.index < len(inputs) and inputs[variable.index] is not None,
        "No input value supplied for ", variable,
    )
    base = inputs[variable.index]
    out_dims = graph.value(output, inputs).dimensionalities
    flat = base.data.copy()
    rows = []

    for j in range(flat.size):
        original = flat[j]

        flat[j] = original + eps
        inputs[variable.index] = Tensor(base.dimensionalities, flat)
        f_plus = graph.value(output, inputs)

        flat[j] = original - eps
        inputs[variable.index] = Tensor(base.dimensionalities, flat)
        f_minus = graph.value(output, inputs)

        flat[j] = original
        rows.append((f_plus.data - f_minus.data) / (2 * eps))

    inputs[variable.index] = base
    data = np.stack(rows) if rows else np.zeros(0)
    return Tensor(base.dimensionalities + out_dims, data)


def check_gradients(
    graph: Graph,
    output: Node,
    moving_variables: Sequence[Variable],
    inputs: Sequence[Optional[Tensor]],
    eps: float = 1e-6,
    atol: float = 1e-5,
    rtol: float = 1e-4,
) -> bool:
    """
    Verify graph.partial_gradient against finite differences.

    Returns
    -------
    True if every Jacobian matches, raises AssertionError otherwise
    """
    derivative = graph.partial_gradient(output, moving_variables, inputs)
    analytical: List[Tensor] = derivative.jacobians

    for i, mv in enumerate(moving_variables):
        numerical = numerical_jacobian(graph, output, mv, inputs, eps=eps)
        if analytical[i].dimensionalities != numerical.dimensionalities:
            raise AssertionError(
                f"Jacobian shape mismatch for moving variable {i}: "
                f"{analytical[i].dimensionalities} vs {numerical.dimensionalities}"
            )
        if not np.allclose(analytical[i].data, numerical.data, atol=atol, rtol=rtol):
            logger.error(
                "Gradient mismatch for moving variable %d (%s):\n%s%s",
                i, graph.variable_name(mv),
                format_tensor(analytical[i], "analytical"),
                format_tensor(numerical, "numerical"),
            )
            raise AssertionError(f"Gradient check failed for moving variable {i}")

    return True
