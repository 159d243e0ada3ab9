"""
Pooling kernels: reduce a variable number of same-dimension inputs per item.

Inputs are passed flat, item ``i`` owning ``in_counts[i]`` consecutive
pointers. MAX/MIN pooling records, per item and per element, the index
(within the item) of the input that won, so backward routes the gradient to
that input only.
"""

from enum import Enum

import numpy as np

from .base import INT_DTYPE, KernelMixin
from .concat import _starts


class PoolingEnum(Enum):
    MAX = "max"
    MIN = "min"
    SUM = "sum"
    AVG = "avg"


class DevicePooling(KernelMixin):
    """Max / min / sum / avg pooling and per-head max"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def _item_inputs(self, table, start: int, n: int, dim: int) -> np.ndarray:
        """(n, dim) host copy of one item's inputs."""
        return np.stack([self._vec(table[start + j], dim) for j in range(n)])

    def pool_forward(self, pooling: PoolingEnum, in_vals, vals, count: int, in_counts,
                     dim: int, hit_inputs):
        """
        Max or min pool.

        Args:
            pooling: PoolingEnum.MAX or PoolingEnum.MIN
            in_vals: Flat input pointers (``sum(in_counts)`` entries)
            vals: Output pointers, ``dim`` numbers each
            count: Number of items
            in_counts: Inputs per item, each at least 1
            dim: Elements per input
            hit_inputs: Device int buffer of ``count * dim``; receives the
                winning input index at ``hit_inputs[i * dim + d]``
        """
        if pooling not in (PoolingEnum.MAX, PoolingEnum.MIN):
            raise ValueError(f"pool_forward expects MAX or MIN, got {pooling}")
        self._check("pool_forward", count, in_vals=(in_vals, sum(in_counts)), vals=vals,
                    in_counts=in_counts)
        if any(n < 1 for n in in_counts):
            raise ValueError("pool_forward: every item needs at least one input")
        pick = np.argmax if pooling is PoolingEnum.MAX else np.argmin
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("pool_forward", count)
            hits = self._ints(hit_inputs, count * dim)
            for i, (start, n) in enumerate(zip(_starts(in_counts), in_counts)):
                stacked = self._item_inputs(x_table, start, n, dim)
                winners = pick(stacked, axis=0)
                hits[i * dim : (i + 1) * dim] = winners.astype(INT_DTYPE)
                self._vec(y_table[i], dim)[:] = stacked[winners, np.arange(dim)]

    def pool_backward(self, losses, in_losses, in_counts, hit_inputs, count: int, dim: int):
        """in_losses[hit][d] += losses[i][d] for the recorded winner of each element."""
        self._check("pool_backward", count, losses=losses,
                    in_losses=(in_losses, sum(in_counts)), in_counts=in_counts)
        with self._pointer_table(losses, in_losses) as (g_table, gx_table):
            self.core.launch("pool_backward", count)
            hits = self._ints(hit_inputs, count * dim)
            for i, start in enumerate(_starts(in_counts)):
                g = self._vec(g_table[i], dim)
                for d in range(dim):
                    self._vec(gx_table[start + int(hits[i * dim + d])], dim)[d] += g[d]

    def sum_pool_forward(self, pooling: PoolingEnum, in_vals, count: int, dim: int, in_counts,
                         vals):
        """Sum (or average) the inputs of every item."""
        if pooling not in (PoolingEnum.SUM, PoolingEnum.AVG):
            raise ValueError(f"sum_pool_forward expects SUM or AVG, got {pooling}")
        self._check("sum_pool_forward", count, in_vals=(in_vals, sum(in_counts)), vals=vals,
                    in_counts=in_counts)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("sum_pool_forward", count)
            for i, (start, n) in enumerate(zip(_starts(in_counts), in_counts)):
                out = self._vec(y_table[i], dim)
                if n == 0:
                    out[:] = 0.0
                    continue
                total = self._item_inputs(x_table, start, n, dim).sum(axis=0)
                out[:] = total / n if pooling is PoolingEnum.AVG else total

    def sum_pool_backward(self, pooling: PoolingEnum, losses, in_counts, count: int, dim: int,
                          in_losses):
        if pooling not in (PoolingEnum.SUM, PoolingEnum.AVG):
            raise ValueError(f"sum_pool_backward expects SUM or AVG, got {pooling}")
        self._check("sum_pool_backward", count, losses=losses, in_counts=in_counts,
                    in_losses=(in_losses, sum(in_counts)))
        with self._pointer_table(losses, in_losses) as (g_table, gx_table):
            self.core.launch("sum_pool_backward", count)
            for i, (start, n) in enumerate(zip(_starts(in_counts), in_counts)):
                g = self._vec(g_table[i], dim)
                if pooling is PoolingEnum.AVG and n:
                    g = g / n
                for j in range(n):
                    self._vec(gx_table[start + j], dim)[:] += g

    def max_scalar_forward(self, inputs, count: int, head_count: int, head_dims, results,
                           max_indexes=None):
        """
        Per-head max: inputs[i] is ``head_dims[i] x head_count``, results[i] holds
        the max of each column.

        Args:
            max_indexes: Optional host list; receives ``count * head_count``
                flat offsets into each input (``h * head_dims[i] + r``)
        """
        self._check("max_scalar_forward", count, inputs=inputs, head_dims=head_dims,
                    results=results)
        flat_indexes = []
        with self._pointer_table(inputs, results) as (x_table, y_table):
            self.core.launch("max_scalar_forward", count)
            for i, d in enumerate(head_dims):
                if d < 1:
                    raise ValueError(f"max_scalar_forward: head_dims[{i}] must be positive")
                x = self._mat(x_table[i], d, head_count)
                rows = np.argmax(x, axis=0)
                self._vec(y_table[i], head_count)[:] = x[rows, np.arange(head_count)]
                flat_indexes.extend(int(h * d + r) for h, r in enumerate(rows))
        if max_indexes is not None:
            max_indexes[:] = flat_indexes
        return flat_indexes

    def max_scalar_backward(self, losses, indexes, count: int, input_losses, head_count: int):
        """input_losses[i][indexes[i * head_count + h]] += losses[i][h]"""
        self._check("max_scalar_backward", count, losses=losses,
                    indexes=(indexes, count * head_count), input_losses=input_losses)
        with self._pointer_table(losses, input_losses) as (g_table, gx_table):
            self.core.launch("max_scalar_backward", count)
            for i in range(count):
                g = self._vec(g_table[i], head_count)
                for h in range(head_count):
                    k = int(indexes[i * head_count + h])
                    self.core.view(int(gx_table[i]) + k * g.itemsize, 1, g.dtype)[0] += g[h]
