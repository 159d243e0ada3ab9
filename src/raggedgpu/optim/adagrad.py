"""
Adagrad optimizer over device parameters.

Uses: update_adagrad, update_adagrad_sparse
"""

from collections.abc import Iterable

from ..nn.parameter import DeviceParam
from .base import Optimizer


class Adagrad(Optimizer):
    """
    Adagrad: ``sum_sq += g^2``, ``param -= lr * g / sqrt(sum_sq + eps)``
    with ``g = grad + weight_decay * param``.
    """

    state_buffers = ("sum_sq",)

    def __init__(
        self,
        params: Iterable[DeviceParam],
        lr: float = 1e-2,
        eps: float = 1e-8,
        weight_decay: float = 0.0,
    ):
        if lr < 0.0:
            raise ValueError(f"Invalid learning rate: {lr}")
        defaults = {"lr": lr, "eps": eps, "weight_decay": weight_decay}
        super().__init__(params, defaults)

    def _update(self, p, state, group):
        kernels = self._learning(p)
        if p.sparse:
            kernels.update_adagrad_sparse(
                p.val, p.grad, p.row, p.col, state["sum_sq"], p.indexers, group["lr"],
                group["weight_decay"], group["eps"],
            )
        else:
            kernels.update_adagrad(
                p.val, p.grad, p.row, p.col, state["sum_sq"], group["lr"],
                group["weight_decay"], group["eps"],
            )
