"""Tests for DeviceConfig and the process-wide device lifecycle."""

import logging

import pytest

from raggedgpu.backend.base import FatalDeviceError
from raggedgpu.backend.core import DeviceCore, end_cuda, get_core, init_cuda
from raggedgpu.config import DeviceConfig


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "RAGGEDGPU_DEVICE_ID",
        "RAGGEDGPU_MEMORY_GB",
        "RAGGEDGPU_MIN_BUCKET_POWER",
        "RAGGEDGPU_SEED",
        "RAGGEDGPU_LOG_LEVEL",
        "RAGGEDGPU_CHECK_BATCHES",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDeviceConfig:
    """Tests for configuration parsing and validation."""

    def test_defaults(self):
        config = DeviceConfig()
        assert config.device_id == 0
        assert config.memory_bytes is None
        assert config.check_batches

    def test_memory_budget_in_bytes(self):
        assert DeviceConfig(memory_in_gb=0.5).memory_bytes == 1 << 29

    def test_log_level_is_normalized(self):
        assert DeviceConfig(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "kwargs",
        [{"device_id": -1}, {"memory_in_gb": -1.0}, {"min_bucket_power": 40}, {"log_level": "loud"}],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            DeviceConfig(**kwargs)

    def test_from_env(self, clean_env):
        clean_env.setenv("RAGGEDGPU_MEMORY_GB", "2")
        clean_env.setenv("RAGGEDGPU_SEED", "7")
        clean_env.setenv("RAGGEDGPU_CHECK_BATCHES", "off")
        config = DeviceConfig.from_env()
        assert config.memory_in_gb == 2.0
        assert config.seed == 7
        assert not config.check_batches

    def test_overrides_beat_env(self, clean_env):
        clean_env.setenv("RAGGEDGPU_SEED", "7")
        assert DeviceConfig.from_env(seed=3).seed == 3

    def test_bad_boolean_env(self, clean_env):
        clean_env.setenv("RAGGEDGPU_CHECK_BATCHES", "maybe")
        with pytest.raises(ValueError):
            DeviceConfig.from_env()

    def test_apply_logging(self):
        DeviceConfig(log_level="ERROR").apply_logging()
        assert logging.getLogger("raggedgpu").level == logging.ERROR
        DeviceConfig().apply_logging()


class TestLifecycle:
    """Tests for init_cuda / end_cuda."""

    def test_init_and_end(self, clean_env):
        core = init_cuda(0, 0)
        try:
            assert get_core() is core
            assert core.active
        finally:
            end_cuda()
        assert not core.active
        with pytest.raises(FatalDeviceError):
            get_core()

    def test_init_reads_memory_budget_from_env(self, clean_env):
        clean_env.setenv("RAGGEDGPU_MEMORY_GB", "1")
        core = init_cuda()
        try:
            assert core.heap.capacity == 1 << 30
        finally:
            end_cuda()

    def test_double_init_is_fatal(self, clean_env):
        init_cuda()
        try:
            with pytest.raises(FatalDeviceError):
                init_cuda()
        finally:
            end_cuda()

    def test_end_without_init_is_fatal(self):
        with pytest.raises(FatalDeviceError):
            end_cuda()

    def test_invalid_device_is_fatal(self, clean_env):
        with pytest.raises(FatalDeviceError):
            init_cuda(device_id=3)
        with pytest.raises(FatalDeviceError):
            get_core()

    def test_use_after_shutdown_is_fatal(self):
        core = DeviceCore(DeviceConfig())
        core.shutdown()
        with pytest.raises(FatalDeviceError):
            core.malloc(16)

    def test_launches_are_counted(self, core):
        core.launch("demo", 3)
        core.launch("demo", 1)
        stats = core.get_stats()
        assert stats["kernel_launches"] == 2
        assert stats["launches_by_kernel"] == {"demo": 2}
