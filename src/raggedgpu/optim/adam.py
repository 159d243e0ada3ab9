"""
Adam optimizer over device parameters.

Uses: update_adam, update_adam_sparse
"""

from collections.abc import Iterable

from ..nn.parameter import DeviceParam
from .base import Optimizer


class Adam(Optimizer):
    """
    Adam with L2 regularization folded into the gradient.

    Implements:
    - g = grad + weight_decay * param (skipped for bias parameters)
    - m = beta1 * m + (1 - beta1) * g
    - v = beta2 * v + (1 - beta2) * g^2
    - param -= lr * sqrt(1 - beta2^t) / (1 - beta1^t) * m / sqrt(v + eps)

    Sparse parameters only update the rows touched since the last
    ``zero_grad`` and use per-row step counts for bias correction.
    """

    state_buffers = ("exp_avg", "exp_avg_sq")

    def __init__(
        self,
        params: Iterable[DeviceParam],
        lr: float = 1e-3,
        betas: tuple = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
    ):
        """
        Initialize Adam optimizer.

        Args:
            params: DeviceParams to optimize
            lr: Learning rate (default: 1e-3)
            betas: Coefficients for computing running averages (default: (0.9, 0.999))
            eps: Term added under the square root (default: 1e-8)
            weight_decay: L2 penalty (default: 0.0)
        """
        if lr < 0.0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if not all(0.0 <= b < 1.0 for b in betas):
            raise ValueError(f"Invalid betas: {betas}")
        defaults = {"lr": lr, "betas": betas, "eps": eps, "weight_decay": weight_decay}
        super().__init__(params, defaults)

    def _update(self, p, state, group):
        beta1, beta2 = group["betas"]
        kernels = self._learning(p)
        if p.sparse:
            kernels.update_adam_sparse(
                p.val, p.grad, p.row, p.col, state["exp_avg"], state["exp_avg_sq"],
                p.indexers, p.iters, beta1, beta2, group["lr"], group["weight_decay"],
                group["eps"],
            )
        else:
            kernels.update_adam(
                p.val, p.grad, p.row, p.col, p.is_bias, state["exp_avg"], state["exp_avg_sq"],
                state["step"], beta1, beta2, group["lr"], group["weight_decay"], group["eps"],
            )
