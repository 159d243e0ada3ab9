"""
raggedgpu - batched kernels over ragged batches for dynamic computation graphs.

- backend: device context, memory pool, buffer handles and kernel families
  (linear, elementwise, concat, pooling, normalization, loss, embedding,
  optimizer updates)
- nn: device-resident parameters
- optim: Optimizers (Adam, AdamW, Adagrad) and gradient clipping
- utils: verification and debug printing
"""

import raggedgpu.nn as nn
import raggedgpu.optim as optim
import raggedgpu.utils as utils
from raggedgpu.backend import (
    Activation,
    BoolArray,
    DeviceArray,
    DeviceInt,
    DeviceNumber,
    DeviceOwnershipError,
    FatalDeviceError,
    IntArray,
    NumberArray,
    NumberPointerArray,
    PoolingEnum,
    VerificationError,
    end_cuda,
    get_core,
    init_cuda,
)
from raggedgpu.backend.compute import DeviceCompute
from raggedgpu.config import DeviceConfig

# Main API exports
Compute = DeviceCompute

__version__ = "0.1.0"

__all__ = [
    "Compute",
    "DeviceCompute",
    "DeviceConfig",
    "init_cuda",
    "end_cuda",
    "get_core",
    "DeviceArray",
    "NumberArray",
    "BoolArray",
    "IntArray",
    "NumberPointerArray",
    "DeviceNumber",
    "DeviceInt",
    "Activation",
    "PoolingEnum",
    "FatalDeviceError",
    "DeviceOwnershipError",
    "VerificationError",
    "nn",
    "optim",
    "utils",
]
