"""
Linear-algebra kernels over ragged batches: shared-weight linear layers,
bias, pointwise linear, and the per-item matrix products used by attention.

Matrices are column-major: a ``row x col`` item stores ``col`` vectors of
``row`` numbers one after another. Weight matrices are ``out_row x in_row``.
Forward kernels overwrite their outputs, backward kernels accumulate.
"""

import numpy as np

from .base import NUMBER_DTYPE, KernelMixin, is_null

# Additive mask value for positions hidden by the lower-triangle mask
MASKED_SCORE = -1e9


class DeviceFNN(KernelMixin):
    """Linear layers and batched matrix products"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    # ==================== GEMM ====================

    def matrix_multiply_matrix(self, W, x, y, row: int, col: int, count: int, useb: bool,
                               should_x_transpose: bool = False,
                               should_W_transpose: bool = False):
        """
        y (row x count) = op(W) (row x col) @ op(x) (col x count), plus y if ``useb``.

        Args:
            W: Pointer to W, stored ``row x col`` (``col x row`` if transposed)
            x: Pointer to x, stored ``col x count`` (``count x col`` if transposed)
            y: Output pointer
            row: Rows of op(W) and y
            col: Inner dimension
            count: Columns of op(x) and y
            useb: Accumulate into the existing y instead of overwriting it
            should_x_transpose: Read x transposed without materializing a copy
            should_W_transpose: Read W transposed without materializing a copy
        """
        self.core.launch("matrix_multiply_matrix", count)
        w = self._mat(W, col, row).T if should_W_transpose else self._mat(W, row, col)
        xm = self._mat(x, count, col).T if should_x_transpose else self._mat(x, col, count)
        out = self._mat(y, row, count)
        product = (w @ xm).astype(NUMBER_DTYPE)
        if useb:
            out += product
        else:
            out[:] = product

    # ==================== Linear ====================

    def linear_forward(self, in_vals, count: int, in_cols, in_row: int, out_row: int, W, bias,
                       vals):
        """
        vals[i] (out_row x in_cols[i]) = W @ in_vals[i] (+ bias per column).

        Args:
            in_vals: Input pointers, each ``in_row x in_cols[i]``
            count: Number of items
            in_cols: Columns per item
            in_row: Input dimension
            out_row: Output dimension
            W: Shared ``out_row x in_row`` weight pointer
            bias: Bias pointer (``out_row``) or None
            vals: Output pointers
        """
        self._check("linear_forward", count, in_vals=in_vals, in_cols=in_cols, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("linear_forward", count)
            w = self._mat(W, out_row, in_row)
            b = None if is_null(bias) else self._vec(bias, out_row)
            for i, cols in enumerate(in_cols):
                y = w @ self._mat(x_table[i], in_row, cols)
                if b is not None:
                    y = y + b[:, None]
                self._mat(y_table[i], out_row, cols)[:] = y

    def linear_backward(self, grads, count: int, cols, in_row: int, out_row: int, W_val, in_vals,
                        bias_grad, in_grads, W_grad):
        """
        Accumulate gradients of a shared-weight linear layer.

        W_grad += sum_i grads[i] @ in_vals[i]^T, bias_grad += column sums of
        every grads[i], in_grads[i] += W^T @ grads[i].
        """
        self._check("linear_backward", count, grads=grads, cols=cols, in_vals=in_vals,
                    in_grads=in_grads)
        with self._pointer_table(grads, in_vals, in_grads) as (g_table, x_table, gx_table):
            self.core.launch("linear_backward", count)
            w = self._mat(W_val, out_row, in_row)
            w_grad = self._mat(W_grad, out_row, in_row)
            b_grad = None if is_null(bias_grad) else self._vec(bias_grad, out_row)
            for i, c in enumerate(cols):
                g = self._mat(g_table[i], out_row, c)
                x = self._mat(x_table[i], in_row, c)
                w_grad += g @ x.T
                if b_grad is not None:
                    b_grad += g.sum(axis=1)
                self._mat(gx_table[i], in_row, c)[:] += w.T @ g

    def copy_for_uni_node_forward(self, xs, b, xs_dest, b_dest, count: int, x_len: int,
                                  b_len: int, use_b: bool):
        """
        Pack inputs for a single GEMM.

        xs[i] becomes column i of ``xs_dest`` (``x_len x count``); when ``use_b``
        the bias ``b`` is replicated into every column of ``b_dest``.
        """
        self._check("copy_for_uni_node_forward", count, xs=xs)
        with self._pointer_table(xs) as (x_table,):
            self.core.launch("copy_for_uni_node_forward", count)
            dest = self._mat(xs_dest, x_len, count)
            for i in range(count):
                dest[:, i] = self._vec(x_table[i], x_len)
            if use_b:
                self._mat(b_dest, b_len, count)[:] = self._vec(b, b_len)[:, None]

    def add_lty_to_param_bias_and_add_lx_to_input_losses_for_uni_backward(
        self, lty, lx, b, losses, count: int, out_dim: int, in_dim: int, use_b: bool
    ):
        """
        Scatter the packed results of a uni-node backward GEMM.

        losses[i] += column i of ``lx`` (``in_dim x count``); when ``use_b``,
        ``b`` (bias gradient) += row sums of ``lty`` (``out_dim x count``).
        """
        self._check("add_lty_..._for_uni_backward", count, losses=losses)
        with self._pointer_table(losses) as (loss_table,):
            self.core.launch("add_lty_lx_uni_backward", count)
            packed = self._mat(lx, in_dim, count)
            for i in range(count):
                self._vec(loss_table[i], in_dim)[:] += packed[:, i]
            if use_b:
                self._vec(b, out_dim)[:] += self._mat(lty, out_dim, count).sum(axis=1)

    def add_lty_to_param_bias_and_add_lx_to_input_losses_for_bi_backward(
        self, lty, lx1, lx2, b, losses1, losses2, count: int, out_dim: int, in_dim1: int,
        in_dim2: int, use_b: bool
    ):
        """Two-input variant of the uni-node scatter."""
        self._check("add_lty_..._for_bi_backward", count, losses1=losses1, losses2=losses2)
        with self._pointer_table(losses1, losses2) as (table1, table2):
            self.core.launch("add_lty_lx_bi_backward", count)
            packed1 = self._mat(lx1, in_dim1, count)
            packed2 = self._mat(lx2, in_dim2, count)
            for i in range(count):
                self._vec(table1[i], in_dim1)[:] += packed1[:, i]
                self._vec(table2[i], in_dim2)[:] += packed2[:, i]
            if use_b:
                self._vec(b, out_dim)[:] += self._mat(lty, out_dim, count).sum(axis=1)

    # ==================== Bias / pointwise linear ====================

    def bias_forward(self, in_vals, bias, count: int, dim: int, vals):
        """vals[i] = in_vals[i] + bias"""
        self._check("bias_forward", count, in_vals=in_vals, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("bias_forward", count)
            b = self._vec(bias, dim)
            for i in range(count):
                self._vec(y_table[i], dim)[:] = self._vec(x_table[i], dim) + b

    def bias_backward(self, losses, count: int, dim: int, bias_loss, input_losses):
        """bias_loss += sum_i losses[i]; input_losses[i] += losses[i]"""
        self._check("bias_backward", count, losses=losses, input_losses=input_losses)
        with self._pointer_table(losses, input_losses) as (g_table, gx_table):
            self.core.launch("bias_backward", count)
            b_grad = self._vec(bias_loss, dim)
            for i in range(count):
                g = self._vec(g_table[i], dim)
                b_grad += g
                self._vec(gx_table[i], dim)[:] += g

    def pointwise_linear_forward(self, in_vals, count: int, dim: int, g, b, vals):
        """vals[i] = in_vals[i] * g + b (elementwise, shared g and b)"""
        self._check("pointwise_linear_forward", count, in_vals=in_vals, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("pointwise_linear_forward", count)
            gain = self._vec(g, dim)
            shift = self._vec(b, dim)
            for i in range(count):
                self._vec(y_table[i], dim)[:] = self._vec(x_table[i], dim) * gain + shift

    def pointwise_linear_backward(self, grads, in_vals, g_vals, count: int, dim: int, in_grads,
                                  g_grads, bias_grads):
        self._check("pointwise_linear_backward", count, grads=grads, in_vals=in_vals,
                    in_grads=in_grads)
        with self._pointer_table(grads, in_vals, in_grads) as (g_table, x_table, gx_table):
            self.core.launch("pointwise_linear_backward", count)
            gain = self._vec(g_vals, dim)
            gain_grad = self._vec(g_grads, dim)
            shift_grad = self._vec(bias_grads, dim)
            for i in range(count):
                grad = self._vec(g_table[i], dim)
                self._vec(gx_table[i], dim)[:] += grad * gain
                gain_grad += grad * self._vec(x_table[i], dim)
                shift_grad += grad

    # ==================== Per-item matrix products ====================

    def tran_matrix_mul_vector_forward(self, matrices, vectors, count: int, cols, row: int, vals):
        """vals[i] (cols[i]) = matrices[i]^T (row x cols[i])^T @ vectors[i] (row)"""
        self._check("tran_matrix_mul_vector_forward", count, matrices=matrices,
                    vectors=vectors, cols=cols, vals=vals)
        with self._pointer_table(matrices, vectors, vals) as (m_table, v_table, y_table):
            self.core.launch("tran_matrix_mul_vector_forward", count)
            for i, c in enumerate(cols):
                m = self._mat(m_table[i], row, c)
                self._vec(y_table[i], c)[:] = m.T @ self._vec(v_table[i], row)

    def tran_matrix_mul_vector_backward(self, grads, matrix_vals, vector_vals, count: int, cols,
                                        row: int, matrix_grads, vector_grads):
        self._check("tran_matrix_mul_vector_backward", count, grads=grads,
                    matrix_vals=matrix_vals, vector_vals=vector_vals, cols=cols,
                    matrix_grads=matrix_grads, vector_grads=vector_grads)
        with self._pointer_table(grads, matrix_vals, vector_vals, matrix_grads,
                                 vector_grads) as tables:
            g_table, m_table, v_table, gm_table, gv_table = tables
            self.core.launch("tran_matrix_mul_vector_backward", count)
            for i, c in enumerate(cols):
                g = self._vec(g_table[i], c)
                m = self._mat(m_table[i], row, c)
                v = self._vec(v_table[i], row)
                self._mat(gm_table[i], row, c)[:] += np.outer(v, g)
                self._vec(gv_table[i], row)[:] += m @ g

    def tran_matrix_mul_matrix_forward(self, input_a_vals, input_b_vals, count: int, a_cols,
                                       b_cols, row: int, use_lower_triangle_mask: bool, vals):
        """
        vals[i] (a_cols[i] x b_cols[i]) = A_i^T @ B_i with A_i, B_i of ``row`` rows.

        With ``use_lower_triangle_mask``, entries (r, c) with r > c are set to
        a large negative score so that a following softmax ignores them.
        """
        self._check("tran_matrix_mul_matrix_forward", count, input_a_vals=input_a_vals,
                    input_b_vals=input_b_vals, a_cols=a_cols, b_cols=b_cols, vals=vals)
        with self._pointer_table(input_a_vals, input_b_vals, vals) as (a_table, b_table, y_table):
            self.core.launch("tran_matrix_mul_matrix_forward", count)
            for i in range(count):
                ac, bc = a_cols[i], b_cols[i]
                out = self._mat(a_table[i], row, ac).T @ self._mat(b_table[i], row, bc)
                if use_lower_triangle_mask:
                    out[np.tril_indices(ac, k=-1, m=bc)] = MASKED_SCORE
                self._mat(y_table[i], ac, bc)[:] = out

    def tran_matrix_mul_matrix_backward(self, grads, a_vals, b_vals, count: int, a_cols, b_cols,
                                        row: int, a_grads, b_grads,
                                        use_lower_triangle_mask: bool = False):
        """Gradients of A^T B; masked positions carry no gradient."""
        self._check("tran_matrix_mul_matrix_backward", count, grads=grads, a_vals=a_vals,
                    b_vals=b_vals, a_cols=a_cols, b_cols=b_cols, a_grads=a_grads,
                    b_grads=b_grads)
        with self._pointer_table(grads, a_vals, b_vals, a_grads, b_grads) as tables:
            g_table, a_table, b_table, ga_table, gb_table = tables
            self.core.launch("tran_matrix_mul_matrix_backward", count)
            for i in range(count):
                ac, bc = a_cols[i], b_cols[i]
                g = self._mat(g_table[i], ac, bc)
                if use_lower_triangle_mask:
                    g = np.triu(g)
                a = self._mat(a_table[i], row, ac)
                b = self._mat(b_table[i], row, bc)
                self._mat(ga_table[i], row, ac)[:] += b @ g.T
                self._mat(gb_table[i], row, bc)[:] += a @ g

    def matrix_mul_matrix_forward(self, a, b, count: int, ks, b_cols, row: int, vals):
        """vals[i] (row x b_cols[i]) = a[i] (row x ks[i]) @ b[i] (ks[i] x b_cols[i])"""
        self._check("matrix_mul_matrix_forward", count, a=a, b=b, ks=ks, b_cols=b_cols, vals=vals)
        with self._pointer_table(a, b, vals) as (a_table, b_table, y_table):
            self.core.launch("matrix_mul_matrix_forward", count)
            for i in range(count):
                k, bc = ks[i], b_cols[i]
                self._mat(y_table[i], row, bc)[:] = (
                    self._mat(a_table[i], row, k) @ self._mat(b_table[i], k, bc)
                )

    def matrix_mul_matrix_backward(self, grads, a_vals, b_vals, count: int, ks, b_cols, row: int,
                                   a_grads, b_grads):
        self._check("matrix_mul_matrix_backward", count, grads=grads, a_vals=a_vals,
                    b_vals=b_vals, ks=ks, b_cols=b_cols, a_grads=a_grads, b_grads=b_grads)
        with self._pointer_table(grads, a_vals, b_vals, a_grads, b_grads) as tables:
            g_table, a_table, b_table, ga_table, gb_table = tables
            self.core.launch("matrix_mul_matrix_backward", count)
            for i in range(count):
                k, bc = ks[i], b_cols[i]
                g = self._mat(g_table[i], row, bc)
                a = self._mat(a_table[i], row, k)
                b = self._mat(b_table[i], k, bc)
                self._mat(ga_table[i], row, k)[:] += g @ b.T
                self._mat(gb_table[i], k, bc)[:] += a.T @ g

    def matrix_and_vector_multi_forward(self, matrices, vectors, count: int, row: int, cols,
                                        vals):
        """vals[i] (row) = matrices[i] (row x cols[i]) @ vectors[i] (cols[i])"""
        self._check("matrix_and_vector_multi_forward", count, matrices=matrices,
                    vectors=vectors, cols=cols, vals=vals)
        with self._pointer_table(matrices, vectors, vals) as (m_table, v_table, y_table):
            self.core.launch("matrix_and_vector_multi_forward", count)
            for i, c in enumerate(cols):
                self._vec(y_table[i], row)[:] = (
                    self._mat(m_table[i], row, c) @ self._vec(v_table[i], c)
                )

    def matrix_and_vector_multi_backward(self, grads, matrices, vectors, count: int, row: int,
                                         cols, matrix_grads, vector_grads):
        self._check("matrix_and_vector_multi_backward", count, grads=grads, matrices=matrices,
                    vectors=vectors, cols=cols, matrix_grads=matrix_grads,
                    vector_grads=vector_grads)
        with self._pointer_table(grads, matrices, vectors, matrix_grads, vector_grads) as tables:
            g_table, m_table, v_table, gm_table, gv_table = tables
            self.core.launch("matrix_and_vector_multi_backward", count)
            for i, c in enumerate(cols):
                g = self._vec(g_table[i], row)
                m = self._mat(m_table[i], row, c)
                v = self._vec(v_table[i], c)
                self._mat(gm_table[i], row, c)[:] += np.outer(g, v)
                self._vec(gv_table[i], c)[:] += m.T @ g
