"""
ParaGraph Core: Tensor
======================

Dense row-major tensors of doubles and the structural algebra that the graph
evaluation algorithms are built on.

Shape conventions:
    A Jacobian of a function F with respect to a variable V has shape
    V.dimensionalities + F.dimensionalities (variable axes first). Chain rule
    composition is then a single contraction over the intermediate's axes:

        dF/dV = contract(dG/dV, dF/dG, G.ndim)
"""

from __future__ import annotations
from typing import Tuple, Sequence, Union, List, Any
import math
import numbers

import numpy as np

from ..exceptions import GraphError, ensure


DTYPE = np.float64

Shape = Tuple[int, ...]


def _compute_strides(shape: Shape) -> Shape:
    if len(shape) == 0:
        return ()
    strides = [1]
    for dim in reversed(shape[1:]):
        strides.append(strides[-1] * dim)
    return tuple(reversed(strides))


def _as_shape(dimensionalities: Sequence[int]) -> Shape:
    dimensionalities = tuple(dimensionalities)
    ensure(
        all(isinstance(d, numbers.Integral) and not isinstance(d, bool) for d in dimensionalities),
        "Tensor dimensionalities must be integers, got ", dimensionalities,
    )
    shape = tuple(int(d) for d in dimensionalities)
    ensure(all(d >= 0 for d in shape), "Tensor dimensionalities must be non-negative, got ", shape)
    return shape


def compute_offset(dimensionalities: Sequence[int], position: Sequence[int]) -> int:
    """Row-major offset of ``position`` in a tensor of the given shape."""
    ensure(
        len(position) == len(dimensionalities),
        "Cannot compute offset of a ", len(dimensionalities), "-D tensor using a ", len(position), "-D position.",
    )
    offset = 0
    strides = _compute_strides(tuple(dimensionalities))
    for axis, (index, size, stride) in enumerate(zip(position, dimensionalities, strides)):
        ensure(0 <= index < size, "Index ", index, " out of bounds for axis ", axis, " with size ", size)
        offset += index * stride
    return offset


def compute_position(dimensionalities: Sequence[int], offset: int) -> Tuple[int, ...]:
    """Inverse of compute_offset: successive division by the row-major strides."""
    size = math.prod(dimensionalities)
    ensure(0 <= offset < size, "Offset ", offset, " out of bounds for tensor of size ", size)
    position = []
    for stride in _compute_strides(tuple(dimensionalities)):
        position.append(offset // stride)
        offset %= stride
    return tuple(position)


class Tensor:
    """
    An immutable multi-dimensional array of doubles.

    ``dimensionalities`` holds the axis sizes (empty for a scalar) and ``data``
    the flat row-major values, so for a 2x3 matrix the data order is
    (0,0), (0,1), (0,2), (1,0), (1,1), (1,2).

    The backing array is flagged read-only. Every operation returns a new
    Tensor, which lets tensors be shared between graph slots without copies.
    """

    __slots__ = ("_dimensionalities", "_data", "__weakref__")

    def __init__(self, dimensionalities: Sequence[int], data: Union[Sequence[float], np.ndarray]):
        shape = _as_shape(dimensionalities)
        flat = np.array(data, dtype=DTYPE).reshape(-1)
        expected = math.prod(shape)
        ensure(
            flat.size == expected,
            "Tensor construction invalid: dimensionalities ", shape,
            " need ", expected, " values, got ", flat.size,
        )
        flat.setflags(write=False)
        self._dimensionalities = shape
        self._data = flat

    @classmethod
    def _wrap(cls, shape: Shape, flat: np.ndarray) -> 'Tensor':
        # Takes ownership of a freshly computed array without copying it.
        result = cls.__new__(cls)
        flat = np.ascontiguousarray(flat, dtype=DTYPE).reshape(-1)
        flat.setflags(write=False)
        result._dimensionalities = shape
        result._data = flat
        return result

    @property
    def dimensionalities(self) -> Shape:
        return self._dimensionalities

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def ndim(self) -> int:
        return len(self._dimensionalities)

    @property
    def size(self) -> int:
        return self._data.size

    @property
    def strides(self) -> Shape:
        return _compute_strides(self._dimensionalities)

    def numpy(self) -> np.ndarray:
        """Read-only view of the data with the tensor's shape."""
        return self._data.reshape(self._dimensionalities)

    def item(self) -> float:
        ensure(self.size == 1, "item() needs a single-element tensor, got dimensionalities ", self._dimensionalities)
        return float(self._data[0])

    def is_valid(self) -> bool:
        return self._data.size == math.prod(self._dimensionalities)

    # ------------------------------------------------------------------
    # Index arithmetic
    # ------------------------------------------------------------------

    def compute_offset(self, position: Sequence[int]) -> int:
        """Offset in ``data`` of an n-dimensional position."""
        return compute_offset(self._dimensionalities, position)

    def compute_position(self, offset: int) -> Tuple[int, ...]:
        """n-dimensional position of an offset in ``data``."""
        return compute_position(self._dimensionalities, offset)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    @staticmethod
    def zero(dimensionalities: Sequence[int]) -> 'Tensor':
        shape = _as_shape(dimensionalities)
        return Tensor._wrap(shape, np.zeros(math.prod(shape), dtype=DTYPE))

    @staticmethod
    def zero_jacobian(function_dimensionalities: Sequence[int],
                      variable_dimensionalities: Sequence[int]) -> 'Tensor':
        """Zero derivative of shape variable_dimensionalities + function_dimensionalities."""
        return Tensor.zero(tuple(variable_dimensionalities) + tuple(function_dimensionalities))

    @staticmethod
    def identity_jacobian(dimensionalities: Sequence[int]) -> 'Tensor':
        """
        Derivative of a tensor with respect to itself.

        A generalised identity matrix of shape dimensionalities + dimensionalities,
        holding 1.0 wherever the variable multi-index equals the function
        multi-index.
        """
        shape = _as_shape(dimensionalities)
        n = math.prod(shape)
        return Tensor._wrap(shape + shape, np.eye(n, dtype=DTYPE))

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    @staticmethod
    def contract(lhs: 'Tensor', rhs: 'Tensor', num_common_dims: int) -> 'Tensor':
        """
        Generalised matrix product.

        Sums over the last ``num_common_dims`` axes of lhs against the first
        ``num_common_dims`` axes of rhs. For 2-D inputs and one common axis this
        is ordinary matrix multiplication; with zero common axes it is the outer
        product. The first order change of a function F for an input change dx
        is ``contract(dx, dF/dx, dx.ndim)``.
        """
        ensure(num_common_dims >= 0, "Number of dimensions to be chained must be greater than or equal to 0")
        ldim, rdim = lhs.dimensionalities, rhs.dimensionalities
        ensure(len(ldim) >= num_common_dims, "lhs tensor is too small for requested chain multiplication")
        ensure(len(rdim) >= num_common_dims, "rhs tensor is too small for requested chain multiplication")

        l_outer = ldim[:len(ldim) - num_common_dims]
        common = ldim[len(ldim) - num_common_dims:]
        r_outer = rdim[num_common_dims:]
        ensure(
            common == rdim[:num_common_dims],
            "Chained dimensionalities of lhs ", ldim, " and rhs ", rdim,
            " are not matching while requesting chain multiplication over ", num_common_dims, " axes.",
        )

        common_size = math.prod(common)
        lmat = lhs.data.reshape(math.prod(l_outer), common_size)
        rmat = rhs.data.reshape(common_size, math.prod(r_outer))
        return Tensor._wrap(l_outer + r_outer, lmat @ rmat)

    @staticmethod
    def add(lhs: 'Tensor', rhs: 'Tensor') -> 'Tensor':
        ldim, rdim = lhs.dimensionalities, rhs.dimensionalities
        ensure(len(ldim) == len(rdim), "Tensors must have matching orders for addition, got ", ldim, " and ", rdim)
        for axis, (lsize, rsize) in enumerate(zip(ldim, rdim)):
            ensure(lsize == rsize, "Tensors must have matching dimensionalities for addition, mismatch at axis ", axis)
        return Tensor._wrap(ldim, lhs.data + rhs.data)

    def __add__(self, other: 'Tensor') -> 'Tensor':
        if not isinstance(other, Tensor):
            return NotImplemented
        return Tensor.add(self, other)

    def __neg__(self) -> 'Tensor':
        return Tensor._wrap(self._dimensionalities, -self._data)

    def __repr__(self) -> str:
        data_str = np.array2string(self.numpy(), precision=4, suppress_small=True)
        return f"Tensor({data_str}, dimensionalities={self._dimensionalities})"


# =============================================================================
# Factories
# =============================================================================

def tensor(data: Any) -> Tensor:
    """Create a tensor from a number, nested lists or an array."""
    arr = np.asarray(data, dtype=DTYPE)
    return Tensor(arr.shape, arr.reshape(-1))


def scalar(value: float) -> Tensor:
    return Tensor((), [value])


def zeros(*shape: int) -> Tensor:
    return Tensor.zero(shape)


def from_numpy(arr: np.ndarray) -> Tensor:
    return tensor(arr)


def as_tensor(obj: Any) -> Tensor:
    if isinstance(obj, Tensor):
        return obj
    try:
        return tensor(obj)
    except (TypeError, ValueError) as exc:
        raise GraphError(f"Cannot create tensor from {type(obj).__name__}: {exc}") from exc


def format_tensor(t: Tensor, name: str = "tensor") -> str:
    """
    Render a tensor row by row.

    A newline is emitted for every trailing axis that reaches its last index,
    so rows end at the last axis and 2-D blocks are separated by blank lines.
    Used for diagnostics when a comparison fails.
    """
    parts: List[str] = [f"value of {name} is:\n"]
    dims = t.dimensionalities
    for offset in range(t.size):
        parts.append(f"{t.data[offset]:12.6g} ")
        position = t.compute_position(offset)
        for axis in range(len(position) - 1, -1, -1):
            if position[axis] != dims[axis] - 1:
                break
            parts.append("\n")
    parts.append("\n")
    return "".join(parts)
