"""Collective-library result codes, their descriptions, and error raising."""

from __future__ import annotations

import enum
from typing import Union


class NcclResult(enum.IntEnum):
    """Result codes returned by collective-library calls."""

    SUCCESS = 0
    UNHANDLED_CUDA_ERROR = 1
    SYSTEM_ERROR = 2
    INTERNAL_ERROR = 3
    INVALID_ARGUMENT = 4
    INVALID_USAGE = 5
    REMOTE_ERROR = 6
    IN_PROGRESS = 7


_DESCRIPTIONS = {
    NcclResult.SUCCESS: "no error",
    NcclResult.UNHANDLED_CUDA_ERROR: "unhandled cuda error (run with NCCL_DEBUG=INFO for details)",
    NcclResult.SYSTEM_ERROR: "unhandled system error (run with NCCL_DEBUG=INFO for details)",
    NcclResult.INTERNAL_ERROR: "internal error - please report this issue to the NCCL developers",
    NcclResult.INVALID_ARGUMENT: "invalid argument (run with NCCL_DEBUG=WARN for details)",
    NcclResult.INVALID_USAGE: "invalid usage (run with NCCL_DEBUG=WARN for details)",
    NcclResult.REMOTE_ERROR: "remote process exited or there was a network error",
    NcclResult.IN_PROGRESS: "NCCL operation in progress",
}

_UNKNOWN = "unknown result code"


def _as_result(code: int) -> Union[NcclResult, int]:
    try:
        return NcclResult(code)
    except ValueError:
        return code


def nccl_error_string(code: int) -> str:
    """Human-readable description of a result code."""
    result = _as_result(code)
    if isinstance(result, NcclResult):
        return _DESCRIPTIONS[result]
    return _UNKNOWN


class NcclError(Exception):
    """Raised for a result code other than success."""

    def __init__(self, code: int) -> None:
        self.code = _as_result(code)
        super().__init__(f"nccl error detected! name: {nccl_error_string(code)}.")


def check_nccl(code: int) -> NcclResult:
    """Return SUCCESS for a successful code, raise NcclError otherwise."""
    if code != NcclResult.SUCCESS:
        raise NcclError(code)
    return NcclResult.SUCCESS