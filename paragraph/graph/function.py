"""
ParaGraph Graph - Tensor Functions
==================================

The contract every operation in a graph must satisfy.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

from ..core.tensor import Tensor


@dataclass
class Derivative:
    """
    A value together with its Jacobians.

    ``jacobians[i]`` is aligned with the i-th input of a function, or with the
    i-th moving variable of a Graph.partial_gradient call, and has shape
    input_dimensionalities + value_dimensionalities.
    """
    value: Tensor
    jacobians: List[Tensor] = field(default_factory=list)


class TensorFunction(ABC):
    """
    A pure function from a sequence of tensors to a single tensor.

    Implementations must validate the number and shapes of their inputs,
    raising GraphError on mismatch, and must not hold on to or modify them.
    Instances are stateless apart from construction parameters, so one
    instance can be shared by any number of operations and graphs.
    """

    @abstractmethod
    def value(self, inputs: Sequence[Tensor]) -> Tensor:
        """Compute the function's value."""
        ...

    @abstractmethod
    def gradient(self, inputs: Sequence[Tensor]) -> Derivative:
        """
        Compute the value and the Jacobian with respect to every input.

        The returned value must equal ``value(inputs)``, and the i-th Jacobian
        must have shape inputs[i].dimensionalities + value.dimensionalities.
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
