"""
Device backend: memory pool, owning buffer handles and batched kernels over
ragged batches.
"""

from .arrays import (
    BoolArray,
    BoolPointerArray,
    DeviceArray,
    DeviceInt,
    DeviceNumber,
    IntArray,
    IntPointerArray,
    NumberArray,
    NumberPointerArray,
    NumberPointerPointerArray,
    pointers,
)
from .base import (
    BatchShapeError,
    DeviceOwnershipError,
    FatalDeviceError,
    VerificationError,
)
from .batch import BatchView, check_batch
from .buffer_pool import DeviceHeap, MemoryPool
from .compute import DeviceCompute
from .core import DeviceCore, end_cuda, get_core, init_cuda
from .elementwise import Activation
from .pooling import PoolingEnum

__all__ = [
    "DeviceCompute",
    "DeviceCore",
    "DeviceHeap",
    "MemoryPool",
    "init_cuda",
    "end_cuda",
    "get_core",
    "DeviceArray",
    "NumberArray",
    "BoolArray",
    "IntArray",
    "NumberPointerArray",
    "BoolPointerArray",
    "IntPointerArray",
    "NumberPointerPointerArray",
    "DeviceNumber",
    "DeviceInt",
    "pointers",
    "BatchView",
    "check_batch",
    "Activation",
    "PoolingEnum",
    "FatalDeviceError",
    "DeviceOwnershipError",
    "VerificationError",
    "BatchShapeError",
]
