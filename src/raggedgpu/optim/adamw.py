"""
AdamW optimizer over device parameters.

Uses: update_adamw, update_adamw_sparse
"""

from collections.abc import Iterable

from ..nn.parameter import DeviceParam
from .adam import Adam


class AdamW(Adam):
    """
    Adam with decoupled weight decay.

    The decay ``param -= lr * weight_decay * param`` is applied to the
    parameter directly instead of being folded into the gradient, and is
    skipped for bias parameters.
    """

    def __init__(
        self,
        params: Iterable[DeviceParam],
        lr: float = 1e-3,
        betas: tuple = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.01,
    ):
        super().__init__(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)

    def _update(self, p, state, group):
        beta1, beta2 = group["betas"]
        kernels = self._learning(p)
        if p.sparse:
            kernels.update_adamw_sparse(
                p.val, p.grad, p.row, p.col, state["exp_avg"], state["exp_avg_sq"],
                p.indexers, p.iters, beta1, beta2, group["lr"], group["weight_decay"],
                group["eps"],
            )
        else:
            kernels.update_adamw(
                p.val, p.grad, p.row, p.col, p.is_bias, state["exp_avg"], state["exp_avg_sq"],
                state["step"], beta1, beta2, group["lr"], group["weight_decay"], group["eps"],
            )
