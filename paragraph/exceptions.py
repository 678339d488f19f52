"""
ParaGraph - Errors
==================

Every contract violation in the package surfaces as a GraphError.
"""

from __future__ import annotations


class GraphError(RuntimeError):
    """Raised when a caller breaks a shape, arity, index or construction contract."""


def ensure(condition: bool, *message_parts) -> None:
    """
    Raise a GraphError if ``condition`` is false.

    The message parts are only stringified and concatenated on failure, so
    callers can pass shapes and indices without formatting them up front.
    """
    if not condition:
        raise GraphError("".join(str(part) for part in message_parts))
