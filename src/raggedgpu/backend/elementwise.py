"""
Elementwise kernels over ragged batches: activations, dropout, scaling,
pointwise products, division, subtraction and N-input addition.

Each kernel handles the concatenated elements of the whole batch in one
pass; per-item lengths keep every item inside its own buffer.
"""

from enum import Enum

import numpy as np

from .base import NUMBER_DTYPE, KernelMixin
from .batch import BatchView

SELU_ALPHA = 1.6732632423543772
SELU_LAMBDA = 1.0507009873554805
LEAKY_RELU_SLOPE = 0.1


class Activation(Enum):
    TANH = "tanh"
    SIGMOID = "sigmoid"
    RELU = "relu"
    LEAKY_RELU = "leaky_relu"
    SELU = "selu"
    LINEAR = "linear"


def _activate(activation: Activation, x: np.ndarray) -> np.ndarray:
    if activation is Activation.TANH:
        return np.tanh(x)
    if activation is Activation.SIGMOID:
        return 1.0 / (1.0 + np.exp(-x))
    if activation is Activation.RELU:
        return np.maximum(x, 0.0)
    if activation is Activation.LEAKY_RELU:
        return np.where(x > 0, x, LEAKY_RELU_SLOPE * x)
    if activation is Activation.SELU:
        return SELU_LAMBDA * np.where(x > 0, x, SELU_ALPHA * (np.exp(x) - 1.0))
    if activation is Activation.LINEAR:
        return x.copy()
    raise ValueError(f"Unknown activation: {activation}")


def _derivative(activation: Activation, y: np.ndarray) -> np.ndarray:
    """Derivative expressed through the forward output ``y``."""
    if activation is Activation.TANH:
        return 1.0 - y * y
    if activation is Activation.SIGMOID:
        return y * (1.0 - y)
    if activation is Activation.RELU:
        return (y > 0).astype(NUMBER_DTYPE)
    if activation is Activation.LEAKY_RELU:
        return np.where(y > 0, 1.0, LEAKY_RELU_SLOPE)
    if activation is Activation.SELU:
        return np.where(y > 0, SELU_LAMBDA, y + SELU_LAMBDA * SELU_ALPHA)
    if activation is Activation.LINEAR:
        return np.ones_like(y)
    raise ValueError(f"Unknown activation: {activation}")


class DeviceElementwise(KernelMixin):
    """Elementwise forward/backward kernels"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    # ==================== Activations ====================

    def activation_forward(self, activation: Activation, xs, count: int, dims, ys):
        """ys[i] = f(xs[i]) for ``dims[i]`` elements."""
        self._check("activation_forward", count, xs=xs, dims=dims, ys=ys)
        batch = BatchView.of(xs, dims)
        with self._pointer_table(xs, ys) as (x_table, y_table):
            self.core.launch(f"activation_forward_{activation.value}", count)
            flat = self._gather(x_table, batch.dims)
            self._scatter(y_table, batch.dims, _activate(activation, flat).astype(NUMBER_DTYPE))

    def activation_backward(self, activation: Activation, losses, vals, count: int, dims, in_losses):
        """
        in_losses[i] += losses[i] * f'(x), with f' computed from forward outputs.

        Args:
            activation: Activation used in the forward pass
            losses: Upstream gradient pointers
            vals: Forward output pointers
            count: Number of items
            dims: Elements per item
            in_losses: Input gradient pointers (accumulated into)
        """
        self._check(
            "activation_backward", count, losses=losses, vals=vals, dims=dims, in_losses=in_losses
        )
        dims = list(dims)
        with self._pointer_table(losses, vals, in_losses) as (g_table, y_table, gx_table):
            self.core.launch(f"activation_backward_{activation.value}", count)
            g = self._gather(g_table, dims)
            y = self._gather(y_table, dims)
            grad = (g * _derivative(activation, y)).astype(NUMBER_DTYPE)
            self._scatter(gx_table, dims, grad, accumulate=True)

    # ==================== Dropout ====================

    def calculate_dropout_mask(self, dropout_ratio: float, dim: int, mask):
        """Fill ``dim`` mask entries with uniform draws in [0, 1)."""
        if not 0.0 <= dropout_ratio < 1.0:
            raise ValueError(f"dropout ratio must be in [0, 1), got {dropout_ratio}")
        self.core.launch("calculate_dropout_mask", 1)
        self._vec(mask, dim)[:] = self.core.rng.random(dim, dtype=NUMBER_DTYPE)

    def _dropout(self, op, xs, count, dims, max_dim, offsets, is_training, drop_mask,
                 drop_factor, ys, accumulate):
        self._check(op, count, xs=xs, dims=dims, ys=ys)
        if not 0.0 <= drop_factor < 1.0:
            raise ValueError(f"{op}: drop factor must be in [0, 1), got {drop_factor}")
        for i, d in enumerate(dims):
            if d > max_dim:
                raise ValueError(f"{op}: dims[{i}]={d} exceeds max_dim={max_dim}")
        batch = BatchView.of(xs, dims)
        if offsets is None:
            offsets = batch.offsets()
        self._check(op, count, offsets=offsets)
        # Mask windows may not overlap or run past count * max_dim entries
        limit = count * max_dim
        end = 0
        for i, (start, d) in enumerate(zip(offsets, batch.dims)):
            if start < end or start + d > limit:
                raise ValueError(
                    f"{op}: mask window {i} [{start}, {start + d}) overlaps item {i - 1} "
                    f"or exceeds {limit} mask entries"
                )
            end = start + d
        with self._pointer_table(xs, ys) as (x_table, y_table):
            self.core.launch(op, count)
            flat = self._gather(x_table, batch.dims)
            if is_training:
                mask_ptrs = [int(drop_mask) + o * NUMBER_DTYPE.itemsize for o in offsets]
                mask = self._gather(mask_ptrs, batch.dims)
                keep = (mask >= drop_factor).astype(NUMBER_DTYPE)
                flat = flat * keep / (1.0 - drop_factor)
            self._scatter(y_table, batch.dims, flat.astype(NUMBER_DTYPE), accumulate=accumulate)

    def dropout_forward(self, xs, count: int, dims, max_dim: int, offsets, is_training: bool,
                        drop_mask, drop_factor: float, ys):
        """
        Inverted dropout.

        Training keeps element j of item i where ``drop_mask[offsets[i] + j] >= drop_factor``
        and rescales it by ``1 / (1 - drop_factor)``; inference is the identity.
        ``offsets=None`` packs the items back to back in the mask.
        """
        self._dropout("dropout_forward", xs, count, dims, max_dim, offsets, is_training,
                      drop_mask, drop_factor, ys, accumulate=False)

    def dropout_backward(self, grads, count: int, dims, max_dim: int, offsets, is_training: bool,
                         drop_mask, drop_factor: float, in_grads):
        """Route gradients through the same mask and scale as the forward pass."""
        self._dropout("dropout_backward", grads, count, dims, max_dim, offsets, is_training,
                      drop_mask, drop_factor, in_grads, accumulate=True)

    # ==================== Broadcast / scaling ====================

    def bucket_forward(self, host_input, count: int, dim: int, ys):
        """Copy the host vector ``host_input`` into every item of ``ys``."""
        self._check("bucket_forward", count, ys=ys)
        host = np.asarray(host_input, dtype=NUMBER_DTYPE).reshape(-1)
        if host.size != dim:
            raise ValueError(f"bucket_forward: input has {host.size} elements, expected {dim}")
        block = self.core.malloc(host.nbytes)
        try:
            self.core.memcpy_htod(block, host)
            with self._pointer_table(ys) as (y_table,):
                self.core.launch("bucket_forward", count)
                src = self._vec(block, dim)
                for i in range(count):
                    self._vec(y_table[i], dim)[:] = src
        finally:
            self.core.free(block)

    def scaled_forward(self, in_vals, count: int, dims, factors, vals):
        """vals[i] = in_vals[i] * factors[i]"""
        self._check("scaled_forward", count, in_vals=in_vals, dims=dims, factors=factors, vals=vals)
        with self._pointer_table(in_vals, vals) as (x_table, y_table):
            self.core.launch("scaled_forward", count)
            for i, d in enumerate(dims):
                self._vec(y_table[i], d)[:] = self._vec(x_table[i], d) * NUMBER_DTYPE.type(factors[i])

    def scaled_backward(self, grads, count: int, dims, factors, in_grads):
        """in_grads[i] += grads[i] * factors[i]"""
        self._check("scaled_backward", count, grads=grads, dims=dims, factors=factors,
                    in_grads=in_grads)
        with self._pointer_table(grads, in_grads) as (g_table, gx_table):
            self.core.launch("scaled_backward", count)
            for i, d in enumerate(dims):
                self._vec(gx_table[i], d)[:] += self._vec(g_table[i], d) * NUMBER_DTYPE.type(
                    factors[i]
                )

    # ==================== Binary pointwise ====================

    def pmulti_forward(self, ins1, ins2, count: int, dim: int, vals):
        """vals[i] = ins1[i] * ins2[i]"""
        self._check("pmulti_forward", count, ins1=ins1, ins2=ins2, vals=vals)
        dims = [dim] * count
        with self._pointer_table(ins1, ins2, vals) as (a_table, b_table, y_table):
            self.core.launch("pmulti_forward", count)
            a = self._gather(a_table, dims)
            b = self._gather(b_table, dims)
            self._scatter(y_table, dims, a * b)

    def pmulti_backward(self, losses, in_vals1, in_vals2, count: int, dim: int, in_losses1,
                        in_losses2):
        self._check("pmulti_backward", count, losses=losses, in_vals1=in_vals1,
                    in_vals2=in_vals2, in_losses1=in_losses1, in_losses2=in_losses2)
        dims = [dim] * count
        with self._pointer_table(losses, in_vals1, in_vals2, in_losses1, in_losses2) as tables:
            g_table, a_table, b_table, ga_table, gb_table = tables
            self.core.launch("pmulti_backward", count)
            g = self._gather(g_table, dims)
            a = self._gather(a_table, dims)
            b = self._gather(b_table, dims)
            self._scatter(ga_table, dims, g * b, accumulate=True)
            self._scatter(gb_table, dims, g * a, accumulate=True)

    def full_div_forward(self, numerators, denominators, count: int, dims, results):
        """results[i] = numerators[i] / denominators[i]"""
        self._check("full_div_forward", count, numerators=numerators,
                    denominators=denominators, dims=dims, results=results)
        dims = list(dims)
        with self._pointer_table(numerators, denominators, results) as (n_table, d_table, y_table):
            self.core.launch("full_div_forward", count)
            n = self._gather(n_table, dims)
            d = self._gather(d_table, dims)
            self._scatter(y_table, dims, n / d)

    def full_div_backward(self, grads, denominator_vals, numerator_vals, count: int, dims,
                          numerator_grads, denominator_grads):
        self._check("full_div_backward", count, grads=grads, denominator_vals=denominator_vals,
                    numerator_vals=numerator_vals, dims=dims, numerator_grads=numerator_grads,
                    denominator_grads=denominator_grads)
        dims = list(dims)
        with self._pointer_table(grads, denominator_vals, numerator_vals, numerator_grads,
                                 denominator_grads) as tables:
            g_table, d_table, n_table, gn_table, gd_table = tables
            self.core.launch("full_div_backward", count)
            g = self._gather(g_table, dims)
            d = self._gather(d_table, dims)
            n = self._gather(n_table, dims)
            self._scatter(gn_table, dims, g / d, accumulate=True)
            self._scatter(gd_table, dims, -g * n / (d * d), accumulate=True)

    def sub_forward(self, minuend, subtrahend, count: int, dims, results):
        """results[i] = minuend[i] - subtrahend[i]"""
        self._check("sub_forward", count, minuend=minuend, subtrahend=subtrahend, dims=dims,
                    results=results)
        dims = list(dims)
        with self._pointer_table(minuend, subtrahend, results) as (a_table, b_table, y_table):
            self.core.launch("sub_forward", count)
            a = self._gather(a_table, dims)
            b = self._gather(b_table, dims)
            self._scatter(y_table, dims, a - b)

    def sub_backward(self, losses, count: int, dims, minuend_losses, subtrahend_losses):
        self._check("sub_backward", count, losses=losses, dims=dims,
                    minuend_losses=minuend_losses, subtrahend_losses=subtrahend_losses)
        dims = list(dims)
        with self._pointer_table(losses, minuend_losses, subtrahend_losses) as tables:
            g_table, ga_table, gb_table = tables
            self.core.launch("sub_backward", count)
            g = self._gather(g_table, dims)
            self._scatter(ga_table, dims, g, accumulate=True)
            self._scatter(gb_table, dims, -g, accumulate=True)

    # ==================== N-input addition ====================

    def padd_forward(self, ins, count: int, dims, max_dim: int, in_count: int, vals, dim_arr):
        """
        vals[i] = sum_j ins[j * count + i] over ``dims[i]`` elements.

        Args:
            ins: ``in_count * count`` input pointers, input-major
            count: Number of items
            dims: Elements per item
            max_dim: Upper bound of ``dims``
            in_count: Inputs per item
            vals: Output pointers
            dim_arr: IntArray filled with ``dims`` for the backward pass
        """
        self._check("padd_forward", count, ins=(ins, count * in_count), dims=dims, vals=vals)
        if any(d > max_dim for d in dims):
            raise ValueError(f"padd_forward: dims exceed max_dim={max_dim}")
        dim_arr.init(list(dims))
        with self._pointer_table(ins, vals) as (in_table, y_table):
            self.core.launch("padd_forward", count)
            device_dims = self._ints(dim_arr.ptr, count)
            for i in range(count):
                d = int(device_dims[i])
                acc = np.zeros(d, dtype=NUMBER_DTYPE)
                for j in range(in_count):
                    acc += self._vec(in_table[j * count + i], d)
                self._vec(y_table[i], d)[:] = acc

    def padd_backward(self, grads, count: int, max_dim: int, in_count: int, in_grads, dim_arr):
        """in_grads[j * count + i] += grads[i], with dims read from ``dim_arr``."""
        self._check("padd_backward", count, grads=grads, in_grads=(in_grads, count * in_count))
        with self._pointer_table(grads, in_grads) as (g_table, gx_table):
            self.core.launch("padd_backward", count)
            device_dims = self._ints(dim_arr.ptr, count)
            for i in range(count):
                d = int(device_dims[i])
                g = self._vec(g_table[i], d)
                for j in range(in_count):
                    self._vec(gx_table[j * count + i], d)[:] += g
