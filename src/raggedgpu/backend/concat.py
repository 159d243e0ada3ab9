"""
Concatenation, splitting and broadcast kernels over ragged batches.

Inputs with a per-item variable count are passed flat: the inputs of item
``i`` follow the inputs of item ``i - 1``, so item ``i`` starts at
``sum(in_counts[:i])``.
"""

import numpy as np

from .base import KernelMixin


def _starts(in_counts) -> list[int]:
    starts, acc = [], 0
    for n in in_counts:
        starts.append(acc)
        acc += n
    return starts


class DeviceConcat(KernelMixin):
    """Concat / split / broadcast operations"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def concat_forward(self, in_vals, in_dims, vals, count: int, in_count: int, out_dim: int,
                       cols):
        """
        Stack ``in_count`` inputs vertically for every item.

        Args:
            in_vals: ``count * in_count`` pointers, input ``j`` of item ``i`` at
                ``in_vals[i * in_count + j]``
            in_dims: Rows of input ``j`` (``in_count`` entries)
            vals: Output pointers, each ``out_dim x cols[i]``
            count: Number of items
            in_count: Inputs per item
            out_dim: ``sum(in_dims)``
            cols: Columns per item
        """
        self._check("concat_forward", count, in_vals=(in_vals, count * in_count),
                    in_dims=(in_dims, in_count), vals=vals, cols=cols)
        if sum(in_dims) != out_dim:
            raise ValueError(f"concat_forward: in_dims sum to {sum(in_dims)}, not {out_dim}")
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("concat_forward", count)
            for i, c in enumerate(cols):
                out = self._mat(y_table[i], out_dim, c)
                row = 0
                for j, d in enumerate(in_dims):
                    out[row : row + d, :] = self._mat(x_table[i * in_count + j], d, c)
                    row += d

    def concat_backward(self, in_grads, in_rows, grads, count: int, in_count: int, out_row: int,
                        cols):
        """Route row blocks of ``grads[i]`` back to each input gradient."""
        self._check("concat_backward", count, in_grads=(in_grads, count * in_count),
                    in_rows=(in_rows, in_count), grads=grads, cols=cols)
        with self._pointer_table(in_grads, grads) as (gx_table, g_table):
            self.core.launch("concat_backward", count)
            for i, c in enumerate(cols):
                g = self._mat(g_table[i], out_row, c)
                row = 0
                for j, d in enumerate(in_rows):
                    self._mat(gx_table[i * in_count + j], d, c)[:] += g[row : row + d, :]
                    row += d

    def matrix_concat_forward(self, in_vals, count: int, in_dim: int, in_counts, vals):
        """vals[i] (in_dim x in_counts[i]) holds item i's input vectors as columns."""
        self._check("matrix_concat_forward", count, in_vals=(in_vals, sum(in_counts)),
                    in_counts=in_counts, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("matrix_concat_forward", count)
            for i, (start, n) in enumerate(zip(_starts(in_counts), in_counts)):
                out = self._mat(y_table[i], in_dim, n)
                for j in range(n):
                    out[:, j] = self._vec(x_table[start + j], in_dim)

    def matrix_concat_backward(self, grads, count: int, in_dim: int, in_counts, in_grads):
        self._check("matrix_concat_backward", count, grads=grads,
                    in_grads=(in_grads, sum(in_counts)), in_counts=in_counts)
        with self._pointer_table(grads, in_grads) as (g_table, gx_table):
            self.core.launch("matrix_concat_backward", count)
            for i, (start, n) in enumerate(zip(_starts(in_counts), in_counts)):
                g = self._mat(g_table[i], in_dim, n)
                for j in range(n):
                    self._vec(gx_table[start + j], in_dim)[:] += g[:, j]

    def scalar_concat_forward(self, ins, count: int, dims, max_dim: int, results):
        """
        results[i][j] = ins[i * max_dim + j][0] for ``j < dims[i]``.

        Entries past ``dims[i]`` in the input table are ignored and may be None.
        """
        self._check("scalar_concat_forward", count, ins=(ins, count * max_dim), dims=dims,
                    results=results)
        with self._pointer_table(ins, results) as (x_table, y_table):
            self.core.launch("scalar_concat_forward", count)
            for i, d in enumerate(dims):
                out = self._vec(y_table[i], d)
                for j in range(d):
                    out[j] = self._vec(x_table[i * max_dim + j], 1)[0]

    def scalar_concat_backward(self, losses, count: int, dims, max_dim: int, in_losses):
        self._check("scalar_concat_backward", count, losses=losses, dims=dims,
                    in_losses=(in_losses, count * max_dim))
        with self._pointer_table(losses, in_losses) as (g_table, gx_table):
            self.core.launch("scalar_concat_backward", count)
            for i, d in enumerate(dims):
                g = self._vec(g_table[i], d)
                for j in range(d):
                    self._vec(gx_table[i * max_dim + j], 1)[0] += g[j]

    def split_forward(self, inputs, offsets, count: int, rows, in_rows, cols, results):
        """results[i] (rows[i] x cols[i]) = rows ``offsets[i]`` onward of inputs[i]."""
        self._check("split_forward", count, inputs=inputs, offsets=offsets, rows=rows,
                    in_rows=in_rows, cols=cols, results=results)
        with self._pointer_table(inputs, results) as (x_table, y_table):
            self.core.launch("split_forward", count)
            for i in range(count):
                off, r = offsets[i], rows[i]
                if off + r > in_rows[i]:
                    raise ValueError(
                        f"split_forward: rows {off}:{off + r} exceed input of {in_rows[i]} rows"
                    )
                x = self._mat(x_table[i], in_rows[i], cols[i])
                self._mat(y_table[i], r, cols[i])[:] = x[off : off + r, :]

    def split_backward(self, grads, offsets, count: int, rows, in_rows, cols, input_grads):
        self._check("split_backward", count, grads=grads, offsets=offsets, rows=rows,
                    in_rows=in_rows, cols=cols, input_grads=input_grads)
        with self._pointer_table(grads, input_grads) as (g_table, gx_table):
            self.core.launch("split_backward", count)
            for i in range(count):
                off, r = offsets[i], rows[i]
                gx = self._mat(gx_table[i], in_rows[i], cols[i])
                gx[off : off + r, :] += self._mat(g_table[i], r, cols[i])

    def scalar_to_vector_forward(self, inputs, count: int, input_col: int, rows, results):
        """Broadcast each of the ``input_col`` scalars of inputs[i] down a column of rows[i]."""
        self._check("scalar_to_vector_forward", count, inputs=inputs, rows=rows,
                    results=results)
        with self._pointer_table(inputs, results) as (x_table, y_table):
            self.core.launch("scalar_to_vector_forward", count)
            for i, r in enumerate(rows):
                x = self._vec(x_table[i], input_col)
                self._mat(y_table[i], r, input_col)[:] = x[None, :]

    def scalar_to_vector_backward(self, losses, count: int, input_col: int, rows, input_losses):
        self._check("scalar_to_vector_backward", count, losses=losses, rows=rows,
                    input_losses=input_losses)
        with self._pointer_table(losses, input_losses) as (g_table, gx_table):
            self.core.launch("scalar_to_vector_backward", count)
            for i, r in enumerate(rows):
                g = self._mat(g_table[i], r, input_col)
                self._vec(gx_table[i], input_col)[:] += g.sum(axis=0)

    def vector_sum_forward(self, inputs, count: int, col: int, dims, results):
        """results[i][c] = sum of column ``c`` of inputs[i] (dims[i] x col)."""
        self._check("vector_sum_forward", count, inputs=inputs, dims=dims, results=results)
        with self._pointer_table(inputs, results) as (x_table, y_table):
            self.core.launch("vector_sum_forward", count)
            for i, d in enumerate(dims):
                self._vec(y_table[i], col)[:] = self._mat(x_table[i], d, col).sum(axis=0)

    def vector_sum_backward(self, losses, count: int, col: int, dims, input_losses):
        self._check("vector_sum_backward", count, losses=losses, dims=dims,
                    input_losses=input_losses)
        with self._pointer_table(losses, input_losses) as (g_table, gx_table):
            self.core.launch("vector_sum_backward", count)
            for i, d in enumerate(dims):
                g = self._vec(g_table[i], col)
                self._mat(gx_table[i], d, col)[:] += g[None, :]

    def param_row_forward(self, param, row_index: int, param_row_count: int, count: int,
                          dim: int, vals):
        """Copy row ``row_index`` of a ``param_row_count x dim`` parameter into every vals[i]."""
        if not 0 <= row_index < param_row_count:
            raise IndexError(f"param_row_forward: row {row_index} of {param_row_count}")
        self._check("param_row_forward", count, vals=vals)
        with self._pointer_table(vals) as (y_table,):
            self.core.launch("param_row_forward", count)
            row = np.array(self._mat(param, param_row_count, dim)[row_index, :])
            for i in range(count):
                self._vec(y_table[i], dim)[:] = row
