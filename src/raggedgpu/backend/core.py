"""
Core device context: heap, memory pool, transfers and kernel launch accounting.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from ..config import DeviceConfig
from .base import fatal
from .buffer_pool import DeviceHeap, MemoryPool

logger = logging.getLogger(__name__)

NUM_DEVICES = 1


class DeviceCore:
    """Device context with a single compute stream.

    Kernels run in launch order; the host observes their results at
    transfers and explicit ``synchronize()`` calls.
    """

    def __init__(self, config: DeviceConfig | None = None):
        """Initialize the instance."""

        self.config = config or DeviceConfig()
        if self.config.device_id >= NUM_DEVICES:
            raise fatal(
                f"invalid device id {self.config.device_id}: {NUM_DEVICES} device(s) available"
            )
        self.heap = DeviceHeap(self.config.memory_bytes)
        self.pool = MemoryPool(self.heap, self.config.min_bucket_power)
        self.rng = np.random.default_rng(self.config.seed)
        self._active = True
        self._stats = {
            "kernel_launches": 0,
            "htod_copies": 0,
            "dtoh_copies": 0,
            "dtod_copies": 0,
            "synchronizations": 0,
        }
        self._launches_by_kernel: dict[str, int] = {}
        logger.info(
            f"device {self.config.device_id} initialized "
            f"(budget={'unbounded' if self.heap.capacity is None else self.heap.capacity} bytes)"
        )

    @property
    def active(self) -> bool:
        return self._active

    def _ensure_active(self):
        if not self._active:
            raise fatal("device context has been torn down")

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------
    def malloc(self, nbytes: int) -> int:
        self._ensure_active()
        return self.pool.malloc(nbytes)

    def free(self, ptr: int):
        self._ensure_active()
        self.pool.free(ptr)

    def view(self, ptr, count: int, dtype) -> np.ndarray:
        """Writable typed view into device memory (kernel-side access)."""
        self._ensure_active()
        return self.heap.view(int(ptr), int(count), dtype)

    # ------------------------------------------------------------------
    # Transfers (synchronizing)
    # ------------------------------------------------------------------
    def memcpy_htod(self, ptr, host: np.ndarray):
        """Copy a host array into device memory at ``ptr``."""
        self._ensure_active()
        host = np.ascontiguousarray(host)
        self.synchronize()
        self.heap.resolve(int(ptr), host.nbytes)[:] = host.reshape(-1).view(np.uint8)
        self._stats["htod_copies"] += 1

    def memcpy_dtoh(self, ptr, count: int, dtype) -> np.ndarray:
        """Copy ``count`` elements of ``dtype`` from the device into a new host array."""
        self._ensure_active()
        self.synchronize()
        result = self.heap.view(int(ptr), int(count), dtype).copy()
        self._stats["dtoh_copies"] += 1
        return result

    def memcpy_dtod(self, dst, src, nbytes: int):
        self._ensure_active()
        data = self.heap.resolve(int(src), nbytes).copy()
        self.heap.resolve(int(dst), nbytes)[:] = data
        self._stats["dtod_copies"] += 1

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------
    def launch(self, kernel: str, count: int):
        """Record one kernel launch over a batch of ``count`` items."""
        self._ensure_active()
        self._stats["kernel_launches"] += 1
        self._launches_by_kernel[kernel] = self._launches_by_kernel.get(kernel, 0) + 1
        logger.debug(f"launch {kernel} count={count}")

    def synchronize(self):
        """Wait for all launched kernels. Launches complete in order on one stream."""
        self._ensure_active()
        self._stats["synchronizations"] += 1

    def get_stats(self) -> dict:
        stats = dict(self._stats)
        stats["launches_by_kernel"] = dict(self._launches_by_kernel)
        stats["pool"] = self.pool.get_stats()
        stats["reserved_bytes"] = self.heap.reserved_bytes
        return stats

    def shutdown(self):
        """Release the pool and heap. Any later use of this context is fatal."""
        if not self._active:
            return
        self.pool.shutdown()
        self.heap.clear()
        self._active = False
        logger.info(f"device {self.config.device_id} shut down")

    def __repr__(self):
        """Return a debug representation."""

        state = "active" if self._active else "closed"
        return f"DeviceCore(device={self.config.device_id}, {state}, pool={self.pool!r})"


# Process-wide context
_current_core: DeviceCore | None = None
_core_lock = threading.Lock()


def init_cuda(
    device_id: int | None = None,
    memory_in_gb: float | None = None,
    config: DeviceConfig | None = None,
) -> DeviceCore:
    """
    Set up the process-wide device context and memory pool.

    Args:
        device_id: Accelerator ordinal (default: ``RAGGEDGPU_DEVICE_ID`` or 0)
        memory_in_gb: Heap budget in GB, 0 = unbounded
            (default: ``RAGGEDGPU_MEMORY_GB`` or 0)
        config: Full configuration; replaces the two arguments above

    Returns:
        The new current DeviceCore
    """
    global _current_core
    if config is None:
        overrides = {}
        if device_id is not None:
            overrides["device_id"] = device_id
        if memory_in_gb is not None:
            overrides["memory_in_gb"] = memory_in_gb
        config = DeviceConfig.from_env(**overrides)
    config.apply_logging()
    with _core_lock:
        if _current_core is not None:
            raise fatal("init_cuda called twice without end_cuda")
        _current_core = DeviceCore(config)
        return _current_core


def end_cuda():
    """Tear down the process-wide device context."""
    global _current_core
    with _core_lock:
        if _current_core is None:
            raise fatal("end_cuda called without init_cuda")
        _current_core.shutdown()
        _current_core = None


def get_core() -> DeviceCore:
    """Return the current device context."""
    core = _current_core
    if core is None:
        raise fatal("device context not initialized; call init_cuda first")
    return core
