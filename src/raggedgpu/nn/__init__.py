"""
Device-resident parameters for training with the raggedgpu kernels.
"""

from .parameter import DeviceParam

__all__ = ["DeviceParam"]
