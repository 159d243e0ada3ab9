"""
Optimizer update kernels.

A parameter is ``row`` rows of ``col`` contiguous numbers. Dense updates
touch every element and share one step counter; sparse updates only touch
rows flagged in a bool mask and keep one int32 step counter per row.

The gradient buffer is read, never written.
"""

import numpy as np

from .base import INT32_MAX, NUMBER_DTYPE, KernelMixin


def _adam_lr(alpha: float, beta1: float, beta2: float, t):
    """Bias-corrected step size for step ``t`` (0-based)."""
    return alpha * np.sqrt(1.0 - np.power(beta2, t + 1.0)) / (1.0 - np.power(beta1, t + 1.0))


class DeviceLearning(KernelMixin):
    """Adam, AdamW and Adagrad parameter updates plus gradient-norm helpers"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def _buffers(self, row: int, col: int, *ptrs):
        n = row * col
        return [self._vec(p, n).reshape(row, col) for p in ptrs]

    def _touched(self, indexers, iters, row: int):
        mask = self._bools(indexers, row)
        return mask, self._ints(iters, row)

    @staticmethod
    def _advance(counters: np.ndarray, mask: np.ndarray):
        """One step per touched row, saturating at int32 max."""
        touched = counters[mask]
        counters[mask] = np.minimum(touched.astype(np.int64) + 1, INT32_MAX)

    # ==================== Adam ====================

    def update_adam(self, val, grad, row: int, col: int, is_bias: bool, aux_mean, aux_square,
                    iter: int, beta1: float, beta2: float, alpha: float, reg: float, eps: float):
        """
        Dense Adam step.

        Args:
            val: Parameter pointer, updated in place
            grad: Gradient pointer
            row: Parameter rows
            col: Numbers per row
            is_bias: Skip L2 regularization
            aux_mean: First-moment buffer
            aux_square: Second-moment buffer
            iter: Steps already taken (0 for the first update)
            beta1: First-moment decay
            beta2: Second-moment decay
            alpha: Learning rate
            reg: L2 coefficient folded into the gradient
            eps: Added under the square root
        """
        self.core.launch("update_adam", row)
        w, g_in, m, v = self._buffers(row, col, val, grad, aux_mean, aux_square)
        g = g_in if is_bias else g_in + reg * w
        m[:] = beta1 * m + (1.0 - beta1) * g
        v[:] = beta2 * v + (1.0 - beta2) * g * g
        lr_t = _adam_lr(alpha, beta1, beta2, iter)
        w -= (lr_t * m / np.sqrt(v + eps)).astype(NUMBER_DTYPE)

    def update_adam_sparse(self, val, grad, row: int, col: int, aux_mean, aux_square, indexers,
                           iters, beta1: float, beta2: float, alpha: float, reg: float,
                           eps: float):
        """
        Adam step restricted to rows flagged in ``indexers``.

        Each touched row uses its own counter in ``iters`` for bias correction,
        then advances it by one. Untouched rows, their moments and their
        counters are left unchanged.
        """
        self.core.launch("update_adam_sparse", row)
        w, g, m, v = self._buffers(row, col, val, grad, aux_mean, aux_square)
        mask, counters = self._touched(indexers, iters, row)
        if not mask.any():
            return
        g_rows = g[mask] + reg * w[mask]
        m[mask] = beta1 * m[mask] + (1.0 - beta1) * g_rows
        v[mask] = beta2 * v[mask] + (1.0 - beta2) * g_rows * g_rows
        lr_t = _adam_lr(alpha, beta1, beta2, counters[mask].astype(np.float64))[:, None]
        w[mask] -= (lr_t * m[mask] / np.sqrt(v[mask] + eps)).astype(NUMBER_DTYPE)
        self._advance(counters, mask)

    # ==================== AdamW ====================

    def update_adamw(self, val, grad, row: int, col: int, is_bias: bool, aux_mean, aux_square,
                     iter: int, beta1: float, beta2: float, alpha: float, reg: float,
                     eps: float):
        """Dense AdamW step: decoupled weight decay ``val -= alpha * reg * val``."""
        self.core.launch("update_adamw", row)
        w, g, m, v = self._buffers(row, col, val, grad, aux_mean, aux_square)
        old = w.copy()
        m[:] = beta1 * m + (1.0 - beta1) * g
        v[:] = beta2 * v + (1.0 - beta2) * g * g
        lr_t = _adam_lr(alpha, beta1, beta2, iter)
        w -= (lr_t * m / np.sqrt(v + eps)).astype(NUMBER_DTYPE)
        if not is_bias:
            w -= (alpha * reg * old).astype(NUMBER_DTYPE)

    def update_adamw_sparse(self, val, grad, row: int, col: int, aux_mean, aux_square,
                            indexers, iters, beta1: float, beta2: float, alpha: float,
                            reg: float, eps: float):
        self.core.launch("update_adamw_sparse", row)
        w, g, m, v = self._buffers(row, col, val, grad, aux_mean, aux_square)
        mask, counters = self._touched(indexers, iters, row)
        if not mask.any():
            return
        old = w[mask]
        g_rows = g[mask]
        m[mask] = beta1 * m[mask] + (1.0 - beta1) * g_rows
        v[mask] = beta2 * v[mask] + (1.0 - beta2) * g_rows * g_rows
        lr_t = _adam_lr(alpha, beta1, beta2, counters[mask].astype(np.float64))[:, None]
        w[mask] = old - lr_t * m[mask] / np.sqrt(v[mask] + eps) - alpha * reg * old
        self._advance(counters, mask)

    # ==================== Adagrad ====================

    def update_adagrad(self, val, grad, row: int, col: int, aux_square, alpha: float,
                       reg: float, eps: float):
        """Dense Adagrad step; ``aux_square`` accumulates squared gradients."""
        self.core.launch("update_adagrad", row)
        w, g_in, s = self._buffers(row, col, val, grad, aux_square)
        g = g_in + reg * w
        s += (g * g).astype(NUMBER_DTYPE)
        w -= (alpha * g / np.sqrt(s + eps)).astype(NUMBER_DTYPE)

    def update_adagrad_sparse(self, val, grad, row: int, col: int, aux_square, indexers,
                              alpha: float, reg: float, eps: float):
        self.core.launch("update_adagrad_sparse", row)
        w, g_in, s = self._buffers(row, col, val, grad, aux_square)
        mask = self._bools(indexers, row)
        if not mask.any():
            return
        g = g_in[mask] + reg * w[mask]
        s[mask] = s[mask] + g * g
        w[mask] = w[mask] - alpha * g / np.sqrt(s[mask] + eps)

    # ==================== Gradient norms ====================

    def square_sum(self, v, length: int) -> float:
        """Sum of squares of ``length`` numbers at ``v``."""
        self.core.launch("square_sum", 1)
        x = self._vec(v, length).astype(np.float64)
        return float(np.dot(x, x))

    def square_sum_rows(self, v, indexers, count: int, dim: int) -> float:
        """Sum of squares over the flagged rows of a ``count x dim`` row-major buffer."""
        self.core.launch("square_sum_rows", 1)
        x = self._vec(v, count * dim).reshape(count, dim)[self._bools(indexers, count)]
        return float(np.sum(x.astype(np.float64) ** 2))

    def rescale(self, v, length: int, scale: float):
        """Multiply ``length`` numbers at ``v`` by ``scale`` in place."""
        self.core.launch("rescale", 1)
        self._vec(v, length)[:] *= NUMBER_DTYPE.type(scale)
