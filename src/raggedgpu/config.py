"""
Device configuration.

Settings can be given explicitly or read from ``RAGGEDGPU_*`` environment
variables, e.g. ``RAGGEDGPU_MEMORY_GB=4 RAGGEDGPU_SEED=7 python train.py``.
"""

import logging
import os
from dataclasses import dataclass

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class DeviceConfig:
    """
    Configuration for a device context.

    Attributes:
        device_id: Accelerator ordinal. Only device 0 exists.
        memory_in_gb: Device heap budget in GB. 0 means unbounded.
        min_bucket_power: Smallest pool bucket is ``2 ** min_bucket_power`` bytes.
        seed: Seed for the dropout-mask generator (None = nondeterministic).
        log_level: Level applied to the ``raggedgpu`` logger on ``init_cuda``.
        check_batches: Validate batch descriptors at every kernel call.
    """

    device_id: int = 0
    memory_in_gb: float = 0.0
    min_bucket_power: int = 8
    seed: int | None = None
    log_level: str = "WARNING"
    check_batches: bool = True

    def __post_init__(self):
        """Validate field values."""
        if self.device_id < 0:
            raise ValueError(f"device_id must be >= 0, got {self.device_id}")
        if self.memory_in_gb < 0:
            raise ValueError(f"memory_in_gb must be >= 0, got {self.memory_in_gb}")
        if not 0 <= self.min_bucket_power <= 28:
            raise ValueError(f"min_bucket_power must be in [0, 28], got {self.min_bucket_power}")
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

    @property
    def memory_bytes(self) -> int | None:
        """Heap capacity in bytes, or None when unbounded."""
        if self.memory_in_gb == 0:
            return None
        return int(self.memory_in_gb * (1 << 30))

    @classmethod
    def from_env(cls, **overrides) -> "DeviceConfig":
        """Build a config from ``RAGGEDGPU_*`` environment variables.

        Keyword overrides take precedence over the environment.
        """
        seed = os.getenv("RAGGEDGPU_SEED")
        values = {
            "device_id": int(os.getenv("RAGGEDGPU_DEVICE_ID", "0")),
            "memory_in_gb": float(os.getenv("RAGGEDGPU_MEMORY_GB", "0")),
            "min_bucket_power": int(os.getenv("RAGGEDGPU_MIN_BUCKET_POWER", "8")),
            "seed": int(seed) if seed is not None else None,
            "log_level": os.getenv("RAGGEDGPU_LOG_LEVEL", "WARNING"),
            "check_batches": _env_bool("RAGGEDGPU_CHECK_BATCHES", True),
        }
        values.update(overrides)
        return cls(**values)

    def apply_logging(self):
        """Set the package logger level."""
        logging.getLogger("raggedgpu").setLevel(self.log_level)
