"""
Base Optimizer class (PyTorch-like) over device parameters.

Optimizer state (moment buffers) lives on the device next to the parameter;
``state_dict`` returns host copies so it can be saved.
"""

import logging
import math
from collections.abc import Iterable
from typing import Any

import numpy as np

from ..backend.arrays import NumberArray
from ..backend.base import NUMBER_DTYPE
from ..backend.learning import DeviceLearning
from ..nn.parameter import DeviceParam

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base class for all optimizers.

    Subclasses name their per-parameter device buffers in ``state_buffers``
    and implement ``_update`` for one parameter.
    """

    state_buffers: tuple = ()

    def __init__(self, params: Iterable[DeviceParam], defaults: dict[str, Any]):
        """
        Initialize optimizer.

        Args:
            params: DeviceParams to optimize, or a list of parameter-group dicts
            defaults: Default hyperparameter values
        """
        self.defaults = defaults
        self.state: dict[int, dict[str, Any]] = {}

        param_groups = list(params)
        if len(param_groups) == 0:
            raise ValueError("Optimizer got an empty parameter list")
        if isinstance(param_groups[0], dict):
            self.param_groups = param_groups
        else:
            self.param_groups = [{"params": param_groups}]

        for group in self.param_groups:
            for key, value in self.defaults.items():
                group.setdefault(key, value)
            for p in group["params"]:
                if not isinstance(p, DeviceParam):
                    raise TypeError("Optimizer can only optimize DeviceParam objects")
                self.state.setdefault(id(p), {})

        self._kernels: DeviceLearning | None = None

    def _learning(self, p: DeviceParam) -> DeviceLearning:
        if self._kernels is None or self._kernels.core is not p.core:
            self._kernels = DeviceLearning(p.core)
        return self._kernels

    def _init_state(self, p: DeviceParam) -> dict[str, Any]:
        state = self.state[id(p)]
        if not state:
            state["step"] = 0
            for name in self.state_buffers:
                buf = NumberArray(p.core)
                buf.init(np.zeros(p.size, dtype=NUMBER_DTYPE))
                state[name] = buf
        return state

    def zero_grad(self):
        """Clear gradients (and touched masks) of every parameter."""
        for group in self.param_groups:
            for p in group["params"]:
                p.zero_grad()

    def step(self, closure=None):
        """
        Perform a single optimization step.

        Args:
            closure: Optional closure that reevaluates the model and returns loss

        Returns:
            The closure's loss, if any
        """
        loss = None
        if closure is not None:
            loss = closure()
        for group in self.param_groups:
            for p in group["params"]:
                state = self._init_state(p)
                self._update(p, state, group)
                state["step"] += 1
        return loss

    def _update(self, p: DeviceParam, state: dict[str, Any], group: dict[str, Any]):
        raise NotImplementedError

    def state_dict(self) -> dict[str, Any]:
        """
        Return the optimizer state with device buffers copied to the host.

        Parameters are identified by their position across the groups.
        """
        state = {}
        for index, p in enumerate(self._params()):
            entry = self.state.get(id(p), {})
            state[index] = {
                k: (v.to_host() if isinstance(v, NumberArray) else v) for k, v in entry.items()
            }
        groups = [{k: v for k, v in g.items() if k != "params"} for g in self.param_groups]
        return {"state": state, "param_groups": groups}

    def load_state_dict(self, state_dict: dict[str, Any]):
        """Upload state produced by ``state_dict`` for the same parameter list."""
        params = self._params()
        for index, saved in state_dict.get("state", {}).items():
            p = params[int(index)]
            state = self._init_state(p)
            for k, v in saved.items():
                if k in self.state_buffers:
                    state[k].init(v)
                else:
                    state[k] = v
        for group, saved in zip(self.param_groups, state_dict.get("param_groups", [])):
            group.update(saved)

    def release(self):
        """Return all optimizer state buffers to the pool."""
        for state in self.state.values():
            for name in self.state_buffers:
                if name in state:
                    state[name].release()
            state.clear()

    def _params(self) -> list[DeviceParam]:
        return [p for group in self.param_groups for p in group["params"]]

    def __repr__(self):
        """Return a debug representation."""

        return f"{self.__class__.__name__}(lr={self.defaults.get('lr', 'N/A')})"


def clip_grad_norm(params: Iterable[DeviceParam], max_norm: float) -> float:
    """
    Rescale gradients in place so their global L2 norm is at most ``max_norm``.

    Sparse parameters only count (and rescale) the rows they touched.

    Returns:
        The norm before clipping
    """
    params = list(params)
    if not params:
        return 0.0
    kernels = DeviceLearning(params[0].core)
    total = 0.0
    for p in params:
        if p.sparse:
            total += kernels.square_sum_rows(p.grad, p.indexers, p.row, p.col)
        else:
            total += kernels.square_sum(p.grad, p.size)
    norm = math.sqrt(total)
    if norm > max_norm:
        scale = max_norm / norm
        logger.debug(f"clipping gradient norm {norm:.4f} to {max_norm}")
        for p in params:
            kernels.rescale(p.grad, p.size, scale)
    return norm
