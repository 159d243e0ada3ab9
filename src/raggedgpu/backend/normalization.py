"""
Column-wise normalization kernels: softmax and standard layer norm.

Both normalize every column of a ragged ``rows x cols`` item independently.
"""

import numpy as np

from .base import NUMBER_DTYPE, KernelMixin

LAYER_NORM_EPS = 1e-6


def _softmax_columns(x: np.ndarray) -> np.ndarray:
    shifted = x - x.max(axis=0, keepdims=True)
    e = np.exp(shifted)
    return e / e.sum(axis=0, keepdims=True)


class DeviceNormalization(KernelMixin):
    """Softmax and layer normalization"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def softmax_forward(self, in_vals, count: int, rows, cols, vals):
        """Softmax over every column of in_vals[i] (rows[i] x cols[i])."""
        self._check("softmax_forward", count, in_vals=in_vals, rows=rows, cols=cols, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("softmax_forward", count)
            for i in range(count):
                r, c = rows[i], cols[i]
                x = self._mat(x_table[i], r, c)
                self._mat(y_table[i], r, c)[:] = _softmax_columns(x).astype(NUMBER_DTYPE)

    def softmax_backward(self, grads, vals, count: int, rows, cols, in_grads):
        """in_grads += y * (g - sum(g * y)) per column, with y the forward output."""
        self._check("softmax_backward", count, grads=grads, vals=vals, rows=rows, cols=cols,
                    in_grads=in_grads)
        with self._pointer_table(grads, vals, in_grads) as (g_table, y_table, gx_table):
            self.core.launch("softmax_backward", count)
            for i in range(count):
                r, c = rows[i], cols[i]
                g = self._mat(g_table[i], r, c)
                y = self._mat(y_table[i], r, c)
                dot = (g * y).sum(axis=0, keepdims=True)
                self._mat(gx_table[i], r, c)[:] += y * (g - dot)

    def standard_layer_norm_forward(self, in_vals, count: int, row: int, cols, max_col: int,
                                    vals, sds):
        """
        Normalize every column to zero mean and unit variance.

        Args:
            in_vals: Input pointers, each ``row x cols[i]``
            count: Number of items
            row: Rows per item
            cols: Columns per item, at most ``max_col``
            max_col: Stride of the ``sds`` buffer
            vals: Output pointers
            sds: Device buffer of ``count * max_col`` numbers; receives the
                standard deviation of column ``c`` of item ``i`` at
                ``sds[i * max_col + c]`` for the backward pass
        """
        self._check("standard_layer_norm_forward", count, in_vals=in_vals, cols=cols, vals=vals)
        if any(c > max_col for c in cols):
            raise ValueError(f"standard_layer_norm_forward: a column count exceeds {max_col}")
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("standard_layer_norm_forward", count)
            sd_buf = self._vec(sds, count * max_col)
            for i, c in enumerate(cols):
                x = self._mat(x_table[i], row, c)
                mean = x.mean(axis=0)
                sd = np.sqrt(((x - mean) ** 2).mean(axis=0) + LAYER_NORM_EPS)
                self._mat(y_table[i], row, c)[:] = (x - mean) / sd
                sd_buf[i * max_col : i * max_col + c] = sd

    def standard_layer_norm_backward(self, grads, count: int, row: int, cols, max_col: int,
                                     vals, sds, in_grads):
        """in_grads += (g - mean(g) - y * mean(g * y)) / sd per column."""
        self._check("standard_layer_norm_backward", count, grads=grads, cols=cols, vals=vals,
                    in_grads=in_grads)
        with self._pointer_table(grads, vals, in_grads) as (g_table, y_table, gx_table):
            self.core.launch("standard_layer_norm_backward", count)
            sd_buf = self._vec(sds, count * max_col)
            for i, c in enumerate(cols):
                g = self._mat(g_table[i], row, c)
                y = self._mat(y_table[i], row, c)
                sd = sd_buf[i * max_col : i * max_col + c]
                delta = g - g.mean(axis=0) - y * (g * y).mean(axis=0)
                self._mat(gx_table[i], row, c)[:] += delta / sd
