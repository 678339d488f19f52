"""
ParaGraph - Tensor Functions
============================

Built-in differentiable functions for machine learning graphs.

Every Jacobian follows the package convention: the derivative with respect to
input i has shape inputs[i].dimensionalities + value.dimensionalities.

Floating-point domain problems (log of a non-positive number, overflowing
exponentials) are not checked; they show up as NaN or infinity in the result.
"""

from __future__ import annotations
from typing import Sequence
import math

import numpy as np

from .core.tensor import Tensor
from .exceptions import ensure
from .graph.function import TensorFunction, Derivative


def _check_arity(name: str, inputs: Sequence[Tensor], expected: int) -> None:
    ensure(
        len(inputs) == expected,
        name, " only works with ", expected, " input(s), found ", len(inputs),
    )


def _check_same_dimensionalities(name: str, lhs: Tensor, rhs: Tensor) -> None:
    ensure(
        lhs.dimensionalities == rhs.dimensionalities,
        name, " only works if inputs have the same dimensionalities, got ",
        lhs.dimensionalities, " and ", rhs.dimensionalities,
    )


def _diagonal_jacobian(dimensionalities, diagonal: np.ndarray) -> Tensor:
    """Jacobian of an element-wise function: diagonal[i] at (i, i)."""
    dims = tuple(dimensionalities)
    return Tensor(dims + dims, np.diag(diagonal))


class Add(TensorFunction):
    """z = x + y"""

    def value(self, inputs):
        _check_arity("add", inputs, 2)
        _check_same_dimensionalities("add", inputs[0], inputs[1])
        return Tensor.add(inputs[0], inputs[1])

    def gradient(self, inputs):
        v = self.value(inputs)
        d = Tensor.identity_jacobian(inputs[0].dimensionalities)
        return Derivative(v, [d, d])


class ChainMultiplication(TensorFunction):
    """
    z = contract(x, y, num_common_dims)

    Flattening x to an m x n matrix A and y to an n x p matrix B:

        C[i,j] = sum_r A[i,r] B[r,j]

        dC[i,j]/dA[k,l] = B[l,j] if i == k else 0
        dC[i,j]/dB[k,l] = A[i,k] if l == j else 0
    """

    def __init__(self, num_common_dims: int):
        ensure(num_common_dims >= 0, "chain multiplication needs num_common_dims >= 0, got ", num_common_dims)
        self.num_common_dims = num_common_dims

    def value(self, inputs):
        _check_arity("chain_multiplication", inputs, 2)
        return Tensor.contract(inputs[0], inputs[1], self.num_common_dims)

    def gradient(self, inputs):
        v = self.value(inputs)
        A, B = inputs
        k = self.num_common_dims
        m = math.prod(A.dimensionalities[:A.ndim - k])
        n = math.prod(A.dimensionalities[A.ndim - k:])
        p = math.prod(B.dimensionalities[k:])
        a = A.data.reshape(m, n)
        b = B.data.reshape(n, p)

        # dCdA[k,l,i,j] and dCdB[k,l,i,j], flattened to input dims + output dims
        dCdA = np.einsum('ki,lj->klij', np.eye(m), b)
        dCdB = np.einsum('ik,lj->klij', a, np.eye(p))
        return Derivative(v, [
            Tensor(A.dimensionalities + v.dimensionalities, dCdA),
            Tensor(B.dimensionalities + v.dimensionalities, dCdB),
        ])

    def __repr__(self) -> str:
        return f"ChainMultiplication(num_common_dims={self.num_common_dims})"


class Sigmoid(TensorFunction):
    """Element-wise logistic function."""

    def value(self, inputs):
        _check_arity("sigmoid", inputs, 1)
        x = inputs[0]
        with np.errstate(over='ignore'):
            s = 1.0 / (1.0 + np.exp(-x.data))
        return Tensor(x.dimensionalities, s)

    def gradient(self, inputs):
        v = self.value(inputs)
        s = v.data
        return Derivative(v, [_diagonal_jacobian(v.dimensionalities, s * (1.0 - s))])


class ReduceSum(TensorFunction):
    """Sum over one axis; the axis is removed from the result."""

    def __init__(self, axis: int):
        ensure(axis >= 0, "reduce_sum needs a non-negative axis, got ", axis)
        self.axis = axis

    def _sizes(self, x: Tensor):
        ensure(
            self.axis < x.ndim,
            "reduce_sum cannot reduce input with order ", x.ndim, " on axis ", self.axis,
        )
        dims = x.dimensionalities
        left = math.prod(dims[:self.axis])
        right = math.prod(dims[self.axis + 1:])
        return left, dims[self.axis], right

    def value(self, inputs):
        _check_arity("reduce_sum", inputs, 1)
        x = inputs[0]
        self._sizes(x)
        out_dims = x.dimensionalities[:self.axis] + x.dimensionalities[self.axis + 1:]
        return Tensor(out_dims, np.sum(x.numpy(), axis=self.axis))

    def gradient(self, inputs):
        v = self.value(inputs)
        x = inputs[0]
        left, common, right = self._sizes(x)
        # 1 wherever the output position is the input position minus the axis
        block = np.einsum('ac,bd->abcd', np.eye(left), np.eye(right))
        d = np.broadcast_to(block[:, None], (left, common, right, left, right))
        return Derivative(v, [Tensor(x.dimensionalities + v.dimensionalities, d)])

    def __repr__(self) -> str:
        return f"ReduceSum(axis={self.axis})"


class Log(TensorFunction):
    """Element-wise natural logarithm."""

    def value(self, inputs):
        _check_arity("log", inputs, 1)
        x = inputs[0]
        with np.errstate(divide='ignore', invalid='ignore'):
            return Tensor(x.dimensionalities, np.log(x.data))

    def gradient(self, inputs):
        v = self.value(inputs)
        x = inputs[0]
        with np.errstate(divide='ignore'):
            diagonal = 1.0 / x.data
        return Derivative(v, [_diagonal_jacobian(x.dimensionalities, diagonal)])


class ElementWiseMultiplication(TensorFunction):
    """z = x * y, element by element."""

    def value(self, inputs):
        _check_arity("element_wise_multiplication", inputs, 2)
        lhs, rhs = inputs
        _check_same_dimensionalities("element_wise_multiplication", lhs, rhs)
        return Tensor(lhs.dimensionalities, lhs.data * rhs.data)

    def gradient(self, inputs):
        v = self.value(inputs)
        lhs, rhs = inputs
        return Derivative(v, [
            _diagonal_jacobian(lhs.dimensionalities, rhs.data),
            _diagonal_jacobian(rhs.dimensionalities, lhs.data),
        ])


class Negative(TensorFunction):
    """z = -x"""

    def value(self, inputs):
        _check_arity("negative", inputs, 1)
        return -inputs[0]

    def gradient(self, inputs):
        v = self.value(inputs)
        return Derivative(v, [-Tensor.identity_jacobian(v.dimensionalities)])


class Softmax(TensorFunction):
    """
    Softmax over every element of the input, whatever its shape.

    With F_i = exp(V_i) / sum_k exp(V_k):

        dF_j/dV_i = F_i (1 - F_i)   if i == j
                  = -F_i F_j        otherwise
    """

    def value(self, inputs):
        _check_arity("softmax", inputs, 1)
        x = inputs[0]
        if x.size == 0:
            return x
        with np.errstate(over='ignore', invalid='ignore'):
            e = np.exp(x.data - np.max(x.data))
            f = e / np.sum(e)
        return Tensor(x.dimensionalities, f)

    def gradient(self, inputs):
        v = self.value(inputs)
        f = v.data
        d = np.diag(f) - np.outer(f, f)
        return Derivative(v, [Tensor(v.dimensionalities + v.dimensionalities, d)])
