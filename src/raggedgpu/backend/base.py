"""
Base constants, error types and the kernel mixin shared by backend modules.
"""

import logging
from contextlib import contextmanager

import numpy as np

logger = logging.getLogger(__name__)

# Element types stored in device memory
NUMBER_DTYPE = np.dtype(np.float32)
INT_DTYPE = np.dtype(np.int32)
BOOL_DTYPE = np.dtype(np.bool_)
POINTER_DTYPE = np.dtype(np.uint64)

NULL_PTR = 0
INT32_MAX = int(np.iinfo(np.int32).max)


class FatalDeviceError(RuntimeError):
    """Unrecoverable device error.

    Device state is untrustworthy once this is raised; callers should
    propagate it to process termination rather than retry.
    """


class DeviceOwnershipError(FatalDeviceError):
    """A device handle was copied, moved or pickled."""


class VerificationError(Exception):
    """Host and device contents diverge at ``index``."""

    def __init__(self, index: int, label: str = ""):
        self.index = index
        self.label = label
        super().__init__(f"verification failed at index {index}" + (f" ({label})" if label else ""))


class BatchShapeError(ValueError):
    """Parallel batch sequences disagree with the batch count."""


def fatal(message: str) -> FatalDeviceError:
    """Log ``message`` at CRITICAL and return the error for the caller to raise."""
    logger.critical(message)
    return FatalDeviceError(message)


def is_null(ptr) -> bool:
    return ptr is None or int(ptr) == NULL_PTR


class KernelMixin:
    """Mixin providing device views and launch helpers for kernel modules.

    Subclasses must have ``self.core`` (a DeviceCore instance).
    """

    # ------------------------------------------------------------------
    # Device views
    # ------------------------------------------------------------------
    def _vec(self, ptr, n: int) -> np.ndarray:
        """Writable float32 view of ``n`` elements at ``ptr``."""
        return self.core.view(ptr, n, NUMBER_DTYPE)

    def _mat(self, ptr, rows: int, cols: int) -> np.ndarray:
        """Column-major ``rows x cols`` matrix at ``ptr`` as a (rows, cols) view."""
        return self.core.view(ptr, rows * cols, NUMBER_DTYPE).reshape(cols, rows).T

    def _ints(self, ptr, n: int) -> np.ndarray:
        return self.core.view(ptr, n, INT_DTYPE)

    def _bools(self, ptr, n: int) -> np.ndarray:
        return self.core.view(ptr, n, BOOL_DTYPE)

    # ------------------------------------------------------------------
    # Launch helpers
    # ------------------------------------------------------------------
    def _check(self, op: str, count: int, **sequences):
        if self.core.config.check_batches:
            from .batch import check_batch

            check_batch(count, op, **sequences)

    @contextmanager
    def _pointer_table(self, *ptr_lists):
        """Pack host pointer lists into device pointer arrays for one launch.

        Yields one uint64 device view per list; the arrays go back to the
        pool when the launch finishes.
        """
        from .arrays import NumberPointerArray

        arrays = []
        try:
            for ptrs in ptr_lists:
                arr = NumberPointerArray(self.core)
                arr.init([0 if p is None else int(p) for p in ptrs])
                arrays.append(arr)
            yield tuple(self.core.view(arr.ptr, arr.len, POINTER_DTYPE) for arr in arrays)
        finally:
            for arr in arrays:
                arr.release()

    def _gather(self, table, dims) -> np.ndarray:
        """Concatenate the per-item vectors addressed by ``table`` into one flat array."""
        parts = [self._vec(table[i], d) for i, d in enumerate(dims)]
        if not parts:
            return np.zeros(0, dtype=NUMBER_DTYPE)
        return np.concatenate(parts)

    def _scatter(self, table, dims, flat: np.ndarray, accumulate: bool = False):
        """Write a flat array back to the per-item vectors addressed by ``table``."""
        offset = 0
        for i, d in enumerate(dims):
            dst = self._vec(table[i], d)
            if accumulate:
                dst += flat[offset : offset + d]
            else:
                dst[:] = flat[offset : offset + d]
            offset += d
