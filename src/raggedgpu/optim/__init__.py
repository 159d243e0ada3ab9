"""
Optimizers over device parameters (PyTorch-like API).
"""

from .adagrad import Adagrad
from .adam import Adam
from .adamw import AdamW
from .base import Optimizer, clip_grad_norm

__all__ = ["Optimizer", "Adam", "AdamW", "Adagrad", "clip_grad_norm"]
