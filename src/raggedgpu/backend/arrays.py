"""
Owning handles over memory-pool blocks.

A device handle owns exactly one block. Handles cannot be copied, deep-copied
or pickled; pass the handle object (or its raw ``ptr``) instead.

Example:
    >>> arr = NumberArray(core)
    >>> arr.init(np.arange(4, dtype=np.float32))
    >>> arr.to_host()
    array([0., 1., 2., 3.], dtype=float32)
    >>> arr.release()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from .base import (
    BOOL_DTYPE,
    INT_DTYPE,
    NULL_PTR,
    NUMBER_DTYPE,
    POINTER_DTYPE,
    DeviceOwnershipError,
    fatal,
)
from .core import DeviceCore, get_core

logger = logging.getLogger(__name__)


class _DeviceHandle:
    """Single-owner device allocation."""

    dtype = NUMBER_DTYPE

    def __init__(self, core: DeviceCore | None = None):
        self.ptr = NULL_PTR
        if isinstance(core, _DeviceHandle):
            raise DeviceOwnershipError(
                f"{type(self).__name__} cannot be constructed from another handle"
            )
        self.core = core if core is not None else get_core()

    def _allocate(self, length: int):
        # Release the previous block before taking a new one
        self._free_block()
        self.ptr = self.core.malloc(length * self.dtype.itemsize)

    def _free_block(self):
        if self.ptr == NULL_PTR:
            return
        ptr, self.ptr = self.ptr, NULL_PTR
        if self.core.active:
            self.core.free(ptr)
        else:
            logger.debug(f"{type(self).__name__} outlived its device context")

    def release(self):
        """Return the owned block to the pool. Safe to call more than once."""
        self._free_block()

    @property
    def initialized(self) -> bool:
        return self.ptr != NULL_PTR

    def __int__(self):
        # Lets kernels take a handle wherever they take a raw address
        return self.ptr

    def __copy__(self):
        raise DeviceOwnershipError(f"{type(self).__name__} cannot be copied")

    def __deepcopy__(self, memo):
        raise DeviceOwnershipError(f"{type(self).__name__} cannot be copied")

    def __reduce_ex__(self, protocol):
        raise DeviceOwnershipError(f"{type(self).__name__} cannot be pickled")

    def __del__(self):
        """Release resources during finalization."""
        if getattr(self, "ptr", NULL_PTR) != NULL_PTR and getattr(self, "core", None) is not None:
            self._free_block()


class DeviceArray(_DeviceHandle):
    """Device buffer of ``len`` elements of ``dtype``."""

    def __init__(self, core: DeviceCore | None = None):
        """Initialize an empty (unallocated) array."""
        super().__init__(core)
        self.len = 0

    def init(self, host_arr_or_len, length: int | None = None):
        """
        Allocate device storage.

        Args:
            host_arr_or_len: Host data to upload, or an element count for
                uninitialized storage
            length: Number of leading host elements to upload (default: all)
        """
        if isinstance(host_arr_or_len, (int, np.integer)):
            length = int(host_arr_or_len)
            if length < 0:
                raise ValueError(f"negative length {length}")
            self._allocate(length)
            self.len = length
            return

        host = np.asarray(host_arr_or_len, dtype=self.dtype).reshape(-1)
        if length is None:
            length = host.size
        if length > host.size:
            raise ValueError(f"length {length} exceeds host array of {host.size}")
        self._allocate(length)
        self.len = length
        self.core.memcpy_htod(self.ptr, host[:length])

    def to_host(self) -> np.ndarray:
        """Copy the whole buffer back to the host."""
        if self.ptr == NULL_PTR:
            raise fatal(f"{type(self).__name__}.to_host on an uninitialized array")
        return self.core.memcpy_dtoh(self.ptr, self.len, self.dtype)

    def offset(self, k: int) -> int:
        """Device address of element ``k``."""
        if not 0 <= k <= self.len:
            raise IndexError(f"offset {k} outside array of {self.len}")
        return self.ptr + k * self.dtype.itemsize

    @property
    def nbytes(self) -> int:
        return self.len * self.dtype.itemsize

    def release(self):
        super().release()
        self.len = 0

    def __len__(self):
        return self.len

    def __repr__(self):
        """Return a debug representation."""
        return f"{type(self).__name__}(ptr={self.ptr:#x}, len={self.len})"


class NumberArray(DeviceArray):
    dtype = NUMBER_DTYPE


class BoolArray(DeviceArray):
    dtype = BOOL_DTYPE


class IntArray(DeviceArray):
    dtype = INT_DTYPE


class _PointerArray(DeviceArray):
    """Array of device addresses."""

    dtype = POINTER_DTYPE

    def init(self, host_arr_or_len, length: int | None = None):
        if not isinstance(host_arr_or_len, (int, np.integer)):
            host_arr_or_len = [_address(p) for p in host_arr_or_len]
        super().init(host_arr_or_len, length)


class NumberPointerArray(_PointerArray):
    pass


class BoolPointerArray(_PointerArray):
    pass


class IntPointerArray(_PointerArray):
    pass


class NumberPointerPointerArray(_PointerArray):
    pass


def _address(p) -> int:
    if p is None:
        return NULL_PTR
    if isinstance(p, DeviceArray):
        return p.ptr
    return int(p)


def pointers(arrays: Sequence) -> list[int]:
    """Raw device addresses of a sequence of arrays (or addresses)."""
    return [_address(a) for a in arrays]


class _DeviceScalar(_DeviceHandle):
    """Single device value with an explicit host shadow ``v``.

    ``v`` is only a cache: after a kernel writes the device value, call
    ``copy_from_device_to_host`` before reading it.
    """

    def __init__(self, core: DeviceCore | None = None):
        super().__init__(core)
        self.v = self.dtype.type(0)

    def init(self):
        self._allocate(1)

    def _require(self):
        if self.ptr == NULL_PTR:
            raise fatal(f"{type(self).__name__} used before init")

    def copy_from_device_to_host(self):
        self._require()
        self.v = self.core.memcpy_dtoh(self.ptr, 1, self.dtype)[0]

    def copy_from_host_to_device(self):
        self._require()
        self.core.memcpy_htod(self.ptr, np.array([self.v], dtype=self.dtype))

    def __repr__(self):
        """Return a debug representation."""
        return f"{type(self).__name__}(ptr={self.ptr:#x}, v={self.v})"


class DeviceNumber(_DeviceScalar):
    dtype = NUMBER_DTYPE


class DeviceInt(_DeviceScalar):
    dtype = INT_DTYPE
