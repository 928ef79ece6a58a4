"""
Operations layer for curve-spine.

Transport-agnostic functions that administrative front ends (the CLI,
scripts, notebooks) call with an :class:`OperationContext` and get an
:class:`OperationResult` back.
"""

from curvespine.ops.context import OperationContext
from curvespine.ops.result import OperationError, OperationResult

__all__ = ["OperationContext", "OperationError", "OperationResult"]
