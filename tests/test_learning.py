"""Tests for optimizer update kernels."""

import numpy as np
import pytest

from raggedgpu.backend.arrays import BoolArray, IntArray
from raggedgpu.backend.base import INT32_MAX

B1, B2, LR, REG, EPS = 0.9, 0.999, 0.01, 0.1, 1e-8


def adam_reference(val, grad, m, v, t, reg=REG, decoupled=False, is_bias=False):
    val, m, v = val.astype(np.float64), m.astype(np.float64), v.astype(np.float64)
    g = grad.astype(np.float64)
    if not decoupled and not is_bias:
        g = g + reg * val
    m = B1 * m + (1 - B1) * g
    v = B2 * v + (1 - B2) * g * g
    lr_t = LR * np.sqrt(1 - B2 ** (t + 1)) / (1 - B1 ** (t + 1))
    new = val - lr_t * m / np.sqrt(v + EPS)
    if decoupled and not is_bias:
        new = new - LR * reg * val
    return new, m, v


@pytest.fixture
def param(upload, rng):
    """A 3x2 parameter with gradient and zeroed moment buffers (flat, row order)."""
    val = rng.standard_normal(6).astype(np.float32)
    grad = rng.standard_normal(6).astype(np.float32)
    devices = upload(val, grad, np.zeros(6), np.zeros(6))
    return val, grad, devices


@pytest.fixture
def rows(core):
    def _rows(touched, counters):
        mask = BoolArray(core)
        mask.init(np.array(touched, dtype=bool))
        iters = IntArray(core)
        iters.init(np.array(counters, dtype=np.int32))
        return mask, iters

    return _rows


class TestAdam:
    """Tests for dense and sparse Adam."""

    def test_dense_step(self, compute, param):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        compute.update_adam(v_dev, g_dev, 3, 2, False, m_dev, s_dev, 0, B1, B2, LR, REG, EPS)
        expected, m, v = adam_reference(val, grad, np.zeros(6), np.zeros(6), 0)
        np.testing.assert_allclose(v_dev.to_host(), expected, rtol=1e-5, atol=1e-6)
        np.testing.assert_allclose(m_dev.to_host(), m, rtol=1e-5, atol=1e-7)
        np.testing.assert_allclose(s_dev.to_host(), v, rtol=1e-5, atol=1e-9)

    def test_two_steps_use_iteration(self, compute, param):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        expected, m, v = val, np.zeros(6), np.zeros(6)
        for t in range(2):
            compute.update_adam(v_dev, g_dev, 3, 2, False, m_dev, s_dev, t, B1, B2, LR, REG, EPS)
            expected, m, v = adam_reference(expected, grad, m, v, t)
        np.testing.assert_allclose(v_dev.to_host(), expected, rtol=1e-5, atol=1e-6)

    def test_bias_skips_regularization(self, compute, param):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        compute.update_adam(v_dev, g_dev, 3, 2, True, m_dev, s_dev, 0, B1, B2, LR, REG, EPS)
        expected, _, _ = adam_reference(val, grad, np.zeros(6), np.zeros(6), 0, is_bias=True)
        np.testing.assert_allclose(v_dev.to_host(), expected, rtol=1e-5, atol=1e-6)

    def test_gradient_is_not_modified(self, compute, param):
        _, grad, (v_dev, g_dev, m_dev, s_dev) = param
        compute.update_adam(v_dev, g_dev, 3, 2, False, m_dev, s_dev, 0, B1, B2, LR, REG, EPS)
        np.testing.assert_array_equal(g_dev.to_host(), grad)

    def test_sparse_only_touches_flagged_rows(self, compute, param, rows):
        """Untouched rows keep values, moments and counters."""
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        mask, iters = rows([False, True, False], [4, 2, 0])
        compute.update_adam_sparse(v_dev, g_dev, 3, 2, m_dev, s_dev, mask, iters,
                                   B1, B2, LR, REG, EPS)

        new = v_dev.to_host().reshape(3, 2)
        np.testing.assert_array_equal(new[0], val.reshape(3, 2)[0])
        np.testing.assert_array_equal(new[2], val.reshape(3, 2)[2])
        np.testing.assert_array_equal(m_dev.to_host().reshape(3, 2)[[0, 2]], 0.0)
        np.testing.assert_array_equal(iters.to_host(), [4, 3, 0])

        # row 1 uses its own counter (2) for bias correction
        expected, _, _ = adam_reference(val[2:4], grad[2:4], np.zeros(2), np.zeros(2), 2)
        np.testing.assert_allclose(new[1], expected, rtol=1e-5, atol=1e-6)

    def test_sparse_counter_saturates(self, compute, param, rows):
        _, _, (v_dev, g_dev, m_dev, s_dev) = param
        mask, iters = rows([True, False, False], [INT32_MAX, 0, 0])
        compute.update_adam_sparse(v_dev, g_dev, 3, 2, m_dev, s_dev, mask, iters,
                                   B1, B2, LR, REG, EPS)
        assert iters.to_host()[0] == INT32_MAX

    def test_sparse_nothing_touched(self, compute, param, rows):
        val, _, (v_dev, g_dev, m_dev, s_dev) = param
        mask, iters = rows([False] * 3, [0] * 3)
        compute.update_adam_sparse(v_dev, g_dev, 3, 2, m_dev, s_dev, mask, iters,
                                   B1, B2, LR, REG, EPS)
        np.testing.assert_array_equal(v_dev.to_host(), val)


class TestAdamW:
    """Tests for decoupled weight decay."""

    def test_dense_step(self, compute, param):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        compute.learning.update_adamw(v_dev, g_dev, 3, 2, False, m_dev, s_dev, 0,
                                      B1, B2, LR, REG, EPS)
        expected, _, _ = adam_reference(val, grad, np.zeros(6), np.zeros(6), 0, decoupled=True)
        np.testing.assert_allclose(v_dev.to_host(), expected, rtol=1e-5, atol=1e-6)

    def test_bias_has_no_decay(self, compute, param):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        compute.learning.update_adamw(v_dev, g_dev, 3, 2, True, m_dev, s_dev, 0,
                                      B1, B2, LR, REG, EPS)
        expected, _, _ = adam_reference(val, grad, np.zeros(6), np.zeros(6), 0,
                                        decoupled=True, is_bias=True)
        np.testing.assert_allclose(v_dev.to_host(), expected, rtol=1e-5, atol=1e-6)

    def test_sparse(self, compute, param, rows):
        val, grad, (v_dev, g_dev, m_dev, s_dev) = param
        mask, iters = rows([True, False, True], [0, 0, 5])
        compute.learning.update_adamw_sparse(v_dev, g_dev, 3, 2, m_dev, s_dev, mask, iters,
                                             B1, B2, LR, REG, EPS)
        new = v_dev.to_host().reshape(3, 2)
        expected, _, _ = adam_reference(val[4:], grad[4:], np.zeros(2), np.zeros(2), 5,
                                        decoupled=True)
        np.testing.assert_allclose(new[2], expected, rtol=1e-5, atol=1e-6)
        np.testing.assert_array_equal(new[1], val[2:4])
        np.testing.assert_array_equal(iters.to_host(), [1, 0, 6])


class TestAdagrad:
    """Tests for dense and sparse Adagrad."""

    def test_dense_accumulates_squares(self, compute, param):
        val, grad, (v_dev, g_dev, s_dev, _) = param
        compute.learning.update_adagrad(v_dev, g_dev, 3, 2, s_dev, LR, REG, EPS)
        g = grad.astype(np.float64) + REG * val
        np.testing.assert_allclose(s_dev.to_host(), g * g, rtol=1e-5)
        np.testing.assert_allclose(v_dev.to_host(), val - LR * g / np.sqrt(g * g + EPS),
                                   rtol=1e-5, atol=1e-6)

        compute.learning.update_adagrad(v_dev, g_dev, 3, 2, s_dev, LR, REG, EPS)
        assert np.all(s_dev.to_host() >= g * g * (1 - 1e-5))

    def test_sparse(self, compute, param, rows):
        val, _, (v_dev, g_dev, s_dev, _) = param
        mask, _ = rows([False, False, True], [0, 0, 0])
        compute.learning.update_adagrad_sparse(v_dev, g_dev, 3, 2, s_dev, mask, LR, REG, EPS)
        new = v_dev.to_host().reshape(3, 2)
        np.testing.assert_array_equal(new[:2], val.reshape(3, 2)[:2])
        assert not np.allclose(new[2], val[4:])
        np.testing.assert_array_equal(s_dev.to_host()[:4], 0.0)


class TestGradientNorm:
    """Tests for square sums and rescaling."""

    def test_square_sum(self, compute, upload):
        (v,) = upload([3.0, 4.0])
        assert compute.learning.square_sum(v, 2) == pytest.approx(25.0)

    def test_square_sum_rows(self, compute, upload, rows):
        (v,) = upload([1.0, 1.0, 2.0, 2.0, 3.0, 3.0])
        mask, _ = rows([True, False, True], [0, 0, 0])
        assert compute.learning.square_sum_rows(v, mask, 3, 2) == pytest.approx(20.0)

    def test_rescale(self, compute, upload):
        (v,) = upload([2.0, -4.0])
        compute.learning.rescale(v, 2, 0.5)
        np.testing.assert_array_equal(v.to_host(), [1.0, -2.0])
