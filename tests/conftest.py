"""
Pytest configuration and fixtures for raggedgpu tests
"""

import numpy as np
import pytest

from raggedgpu.backend.arrays import NumberArray
from raggedgpu.backend.compute import DeviceCompute
from raggedgpu.backend.core import DeviceCore
from raggedgpu.config import DeviceConfig


@pytest.fixture
def core():
    """Isolated device context (not the process-wide one)"""
    device = DeviceCore(DeviceConfig(seed=1234))
    yield device
    device.shutdown()


@pytest.fixture
def compute(core):
    return DeviceCompute(core)


@pytest.fixture
def upload(core):
    """Factory uploading host arrays (flattened column-major) to NumberArrays"""

    def _upload(*hosts):
        arrays = []
        for host in hosts:
            arr = NumberArray(core)
            arr.init(np.asarray(host, dtype=np.float32).flatten(order="F"))
            arrays.append(arr)
        return arrays

    return _upload


@pytest.fixture
def zeros(core):
    """Factory allocating zero-filled NumberArrays of the given lengths"""

    def _zeros(*lengths):
        arrays = []
        for n in lengths:
            arr = NumberArray(core)
            arr.init(np.zeros(n, dtype=np.float32))
            arrays.append(arr)
        return arrays

    return _zeros


@pytest.fixture
def rng():
    return np.random.default_rng(42)
