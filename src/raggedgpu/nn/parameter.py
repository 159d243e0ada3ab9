"""
Device-resident trainable parameter.

A DeviceParam owns its value and gradient buffers on the device. Sparse
parameters (embedding tables) also own a per-row "touched" mask, filled by
lookup_backward, and per-row step counters used by the sparse optimizers.
"""

import numpy as np

from ..backend.arrays import BoolArray, IntArray, NumberArray
from ..backend.base import NUMBER_DTYPE
from ..backend.core import DeviceCore, get_core


class DeviceParam:
    """
    ``row x col`` parameter stored as ``row`` rows of ``col`` contiguous numbers.

    Similar to a framework Parameter, but the data and ``.grad`` live in
    device memory.
    """

    def __init__(
        self,
        host_values: np.ndarray,
        row: int,
        col: int,
        is_bias: bool = False,
        sparse: bool = False,
        core: DeviceCore | None = None,
    ):
        """
        Upload ``host_values`` and allocate zeroed gradient (and sparse) state.

        Args:
            host_values: ``row * col`` initial values in row order
            row: Number of rows (vocabulary size for embeddings)
            col: Numbers per row
            is_bias: Exempt from weight decay
            sparse: Track touched rows for the sparse optimizer kernels
            core: Device context (defaults to the current one)
        """
        self.core = core if core is not None else get_core()
        host = np.asarray(host_values, dtype=NUMBER_DTYPE).reshape(-1)
        if host.size != row * col:
            raise ValueError(f"expected {row * col} values for a {row}x{col} parameter, got {host.size}")
        self.row = row
        self.col = col
        self.is_bias = is_bias
        self.sparse = sparse

        self.val = NumberArray(self.core)
        self.val.init(host)
        self.grad = NumberArray(self.core)
        self.grad.init(np.zeros(row * col, dtype=NUMBER_DTYPE))
        self.indexers = None
        self.iters = None
        if sparse:
            self.indexers = BoolArray(self.core)
            self.indexers.init(np.zeros(row, dtype=bool))
            self.iters = IntArray(self.core)
            self.iters.init(np.zeros(row, dtype=np.int32))

    @property
    def size(self) -> int:
        return self.row * self.col

    def zero_grad(self):
        """Clear the gradient and, for sparse parameters, the touched mask."""
        self.core.view(self.grad.ptr, self.size, NUMBER_DTYPE)[:] = 0.0
        if self.sparse:
            self.core.view(self.indexers.ptr, self.row, np.bool_)[:] = False

    def to_host(self) -> np.ndarray:
        """Parameter values as a ``(row, col)`` host array."""
        return self.val.to_host().reshape(self.row, self.col)

    def grad_to_host(self) -> np.ndarray:
        return self.grad.to_host().reshape(self.row, self.col)

    def touched_rows(self) -> np.ndarray:
        """Indices of rows flagged since the last ``zero_grad``."""
        if not self.sparse:
            return np.arange(self.row)
        return np.flatnonzero(self.indexers.to_host())

    def release(self):
        for arr in (self.val, self.grad, self.indexers, self.iters):
            if arr is not None:
                arr.release()

    def __repr__(self):
        """Return a debug representation."""

        kind = "sparse" if self.sparse else "dense"
        return f"DeviceParam({self.row}x{self.col}, {kind}, is_bias={self.is_bias})"
