"""
Host <-> device transfer helpers and memset kernels.

The multi-vector variants pack the per-item results of a batched call into
one contiguous buffer (and back), so a whole batch can cross the host/device
boundary in one copy.
"""

import numpy as np

from .base import BOOL_DTYPE, INT_DTYPE, NUMBER_DTYPE, KernelMixin
from .batch import BatchView


class DeviceTransfer(KernelMixin):
    """Transfers, raw allocation and memset kernels"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes from the pool. Free with ``core.free``."""
        return self.core.malloc(size)

    def memset(self, p, length: int, value, dtype=NUMBER_DTYPE):
        """Fill ``length`` elements at ``p`` with ``value``."""
        dtype = np.dtype(dtype)
        if dtype not in (NUMBER_DTYPE, BOOL_DTYPE, INT_DTYPE):
            raise TypeError(f"memset does not support {dtype}")
        self.core.launch("memset", 1)
        self.core.view(p, length, dtype)[:] = value

    def batch_memset(self, vec, count: int, dims, value):
        """Fill each item ``vec[i]`` (of ``dims[i]`` numbers) with ``value``."""
        self._check("batch_memset", count, vec=vec, dims=dims)
        batch = BatchView.of(vec, dims)
        with self._pointer_table(batch.ptrs) as (table,):
            self.core.launch("batch_memset", count)
            for i, d in enumerate(batch.dims):
                self._vec(table[i], d)[:] = value

    def copy_from_multi_vectors_to_one_vector(self, src, dest, count: int, length: int):
        """Pack ``count`` vectors of ``length`` into one contiguous buffer at ``dest``."""
        self._check("copy_from_multi_vectors_to_one_vector", count, src=src)
        with self._pointer_table(src) as (table,):
            self.core.launch("copy_multi_to_one", count)
            out = self._vec(dest, count * length)
            for i in range(count):
                out[i * length : (i + 1) * length] = self._vec(table[i], length)

    def copy_from_one_vector_to_multi_vals(self, src, vals, count: int, length: int):
        """Unpack a contiguous buffer into ``count`` vectors of ``length``."""
        self._check("copy_from_one_vector_to_multi_vals", count, vals=vals)
        with self._pointer_table(vals) as (table,):
            self.core.launch("copy_one_to_multi", count)
            packed = self._vec(src, count * length)
            for i in range(count):
                self._vec(table[i], length)[:] = packed[i * length : (i + 1) * length]

    def copy_from_host_to_device(self, src, dest, count: int, dim: int):
        """
        Upload ``count`` host vectors of ``dim`` numbers in one transfer.

        Args:
            src: Host arrays, one per item
            dest: Device pointers, one per item
            count: Number of items
            dim: Elements per item
        """
        self._check("copy_from_host_to_device", count, src=src, dest=dest)
        staging = np.zeros(count * dim, dtype=NUMBER_DTYPE)
        for i in range(count):
            staging[i * dim : (i + 1) * dim] = np.asarray(src[i], dtype=NUMBER_DTYPE).reshape(-1)[
                :dim
            ]
        block = self.core.malloc(staging.nbytes)
        try:
            self.core.memcpy_htod(block, staging)
            self.copy_from_one_vector_to_multi_vals(block, dest, count, dim)
        finally:
            self.core.free(block)

    def copy_from_device_to_host(self, src, dest, count: int, dim: int):
        """
        Download ``count`` device vectors of ``dim`` numbers in one transfer.

        Args:
            src: Device pointers, one per item
            dest: Writable host arrays, one per item (filled in place)
            count: Number of items
            dim: Elements per item
        """
        self._check("copy_from_device_to_host", count, src=src, dest=dest)
        block = self.core.malloc(count * dim * NUMBER_DTYPE.itemsize)
        try:
            self.copy_from_multi_vectors_to_one_vector(src, block, count, dim)
            staging = self.core.memcpy_dtoh(block, count * dim, NUMBER_DTYPE)
        finally:
            self.core.free(block)
        for i in range(count):
            dest[i][:dim] = staging[i * dim : (i + 1) * dim]
