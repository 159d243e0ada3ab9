"""
Device heap and memory pool.

The heap is the device address space: every fresh allocation becomes a
256-byte aligned segment addressed by an integer device pointer (0 is null).
The pool sits on top of it and keeps freed blocks in size-bucketed
free-lists so that later requests reuse them instead of growing the heap.

Key features:
1. Power-of-two bucketing (256 B .. 256 MB), 1 MB granularity above that
2. LIFO reuse within a bucket
3. Memory is retained for the lifetime of the context, released on shutdown
4. Thread-safe free-lists
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import defaultdict

import numpy as np

from .base import NULL_PTR, fatal

logger = logging.getLogger(__name__)


class DeviceHeap:
    """Device address space backed by host byte segments."""

    ALIGNMENT = 256

    def __init__(self, capacity: int | None = None):
        """
        Initialize the heap.

        Args:
            capacity: Maximum bytes that may be reserved (None = unbounded)
        """
        self.capacity = capacity
        self._segments: dict[int, np.ndarray] = {}
        self._bases: list[int] = []
        # Address 0 stays unmapped so that it can act as the null pointer
        self._next_address = self.ALIGNMENT
        self.reserved_bytes = 0
        self.allocation_count = 0

    def allocate(self, nbytes: int) -> int:
        """Reserve a fresh segment of ``nbytes`` and return its device address."""
        nbytes = max(int(nbytes), 1)
        if self.capacity is not None and self.reserved_bytes + nbytes > self.capacity:
            raise fatal(
                f"device out of memory: requested {nbytes} bytes with "
                f"{self.reserved_bytes}/{self.capacity} bytes reserved"
            )
        address = self._next_address
        self._segments[address] = np.zeros(nbytes, dtype=np.uint8)
        bisect.insort(self._bases, address)
        aligned = (nbytes + self.ALIGNMENT - 1) // self.ALIGNMENT * self.ALIGNMENT
        self._next_address += aligned
        self.reserved_bytes += nbytes
        self.allocation_count += 1
        return address

    def release(self, address: int):
        """Unmap the segment that starts at ``address``."""
        segment = self._segments.pop(address, None)
        if segment is None:
            raise fatal(f"release of unmapped device address {address:#x}")
        self._bases.remove(address)
        self.reserved_bytes -= segment.nbytes

    def resolve(self, address: int, nbytes: int) -> np.ndarray:
        """Return a writable byte view of ``[address, address + nbytes)``.

        Interior pointers are accepted; the range must stay inside one segment.
        """
        address = int(address)
        if address == NULL_PTR:
            raise fatal("null device pointer dereference")
        idx = bisect.bisect_right(self._bases, address) - 1
        if idx < 0:
            raise fatal(f"invalid device address {address:#x}")
        base = self._bases[idx]
        segment = self._segments[base]
        start = address - base
        if start + nbytes > segment.nbytes:
            raise fatal(
                f"device access out of bounds: {address:#x}+{nbytes} exceeds "
                f"segment {base:#x}+{segment.nbytes}"
            )
        return segment[start : start + nbytes]

    def view(self, address: int, count: int, dtype) -> np.ndarray:
        """Typed view of ``count`` elements at ``address``."""
        dtype = np.dtype(dtype)
        if address % dtype.itemsize:
            raise fatal(f"misaligned {dtype} access at {address:#x}")
        return self.resolve(address, count * dtype.itemsize).view(dtype)

    def clear(self):
        self._segments.clear()
        self._bases.clear()
        self.reserved_bytes = 0


class MemoryPool:
    """
    Free-list allocator over a DeviceHeap.

    Example:
        >>> pool = MemoryPool(DeviceHeap())
        >>> ptr = pool.malloc(1024)
        >>> pool.free(ptr)
        >>> pool.malloc(1000) == ptr  # same bucket, reused
        True
    """

    MAX_BUCKET_POWER = 28  # 256 MB
    LARGE_GRANULARITY = 1 << 20

    def __init__(self, heap: DeviceHeap, min_bucket_power: int = 8):
        """Initialize the instance."""

        self.heap = heap
        self.min_bucket_power = min_bucket_power
        self._free_lists: dict[int, list[int]] = defaultdict(list)
        self._live: dict[int, int] = {}
        self._pooled_bytes = 0
        self._live_bytes = 0
        self._lock = threading.Lock()
        self._closed = False
        self._stats = {
            "hits": 0,
            "misses": 0,
            "allocations": 0,
            "total_acquired": 0,
            "total_released": 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def _size_to_bucket(self, size: int) -> int:
        """Round size up to its bucket size."""
        if size <= 0:
            return 1 << self.min_bucket_power
        power = max(self.min_bucket_power, (size - 1).bit_length())
        if power <= self.MAX_BUCKET_POWER:
            return 1 << power
        granularity = self.LARGE_GRANULARITY
        return (size + granularity - 1) // granularity * granularity

    def malloc(self, size: int) -> int:
        """
        Allocate at least ``size`` bytes.

        Args:
            size: Requested size in bytes

        Returns:
            Device pointer to a block exclusively owned by the caller
        """
        if self._closed:
            raise fatal("malloc on a memory pool that has been shut down")
        bucket_size = self._size_to_bucket(int(size))

        with self._lock:
            self._stats["total_acquired"] += 1
            free_list = self._free_lists[bucket_size]
            if free_list:
                ptr = free_list.pop()
                self._pooled_bytes -= bucket_size
                self._stats["hits"] += 1
            else:
                self._stats["misses"] += 1
                self._stats["allocations"] += 1
                ptr = self.heap.allocate(bucket_size)
                logger.debug(f"pool miss: new {bucket_size}-byte block at {ptr:#x}")
            self._live[ptr] = bucket_size
            self._live_bytes += bucket_size
        return ptr

    def free(self, ptr: int):
        """Return a block to its bucket's free-list."""
        with self._lock:
            bucket_size = self._live.pop(int(ptr), None)
            if bucket_size is None:
                raise fatal(f"free of unknown or already freed device pointer {int(ptr):#x}")
            self._free_lists[bucket_size].append(int(ptr))
            self._live_bytes -= bucket_size
            self._pooled_bytes += bucket_size
            self._stats["total_released"] += 1

    def block_size(self, ptr: int) -> int:
        """Bucket size of a live block."""
        with self._lock:
            try:
                return self._live[int(ptr)]
            except KeyError:
                raise fatal(f"unknown device pointer {int(ptr):#x}") from None

    def get_stats(self) -> dict:
        """Get pool statistics"""
        with self._lock:
            stats = dict(self._stats)
            stats["live_bytes"] = self._live_bytes
            stats["pooled_bytes"] = self._pooled_bytes
            stats["live_blocks"] = len(self._live)
            stats["buckets"] = {
                size: len(blocks) for size, blocks in self._free_lists.items() if blocks
            }
            stats["hit_rate"] = stats["hits"] / max(1, stats["hits"] + stats["misses"])
            return stats

    def shutdown(self):
        """Release every block back to the heap. The pool is unusable afterwards."""
        with self._lock:
            if self._live:
                logger.warning(f"memory pool shut down with {len(self._live)} live blocks")
            for blocks in self._free_lists.values():
                for ptr in blocks:
                    self.heap.release(ptr)
            for ptr in self._live:
                self.heap.release(ptr)
            self._free_lists.clear()
            self._live.clear()
            self._pooled_bytes = 0
            self._live_bytes = 0
            self._closed = True

    def __repr__(self):
        """Return a debug representation."""

        stats = self.get_stats()
        return (
            f"MemoryPool(live={stats['live_bytes'] // 1024}KB, "
            f"pooled={stats['pooled_bytes'] // 1024}KB, "
            f"hit_rate={stats['hit_rate']:.1%}, allocs={stats['allocations']})"
        )
