"""Core tensor type and tensor algebra for ParaGraph."""

from .tensor import (
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

__all__ = [
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
]
