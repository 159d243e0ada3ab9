"""Tests for softmax and layer normalization kernels."""

import numpy as np


def download(arr, rows, cols):
    return arr.to_host().reshape(cols, rows).T


def softmax_columns(x):
    e = np.exp(x - x.max(axis=0))
    return e / e.sum(axis=0)


class TestSoftmax:
    """Tests for column-wise softmax."""

    def test_uniform_logits(self, compute, upload, zeros):
        (x,) = upload([1.0, 1.0, 1.0])
        (y,) = zeros(3)
        compute.softmax_forward([x], 1, [3], [1], [y])
        np.testing.assert_allclose(y.to_host(), [1 / 3] * 3, rtol=1e-6)

    def test_ragged_rows_and_cols(self, compute, upload, zeros, rng):
        xs = [rng.standard_normal((2, 3)).astype(np.float32),
              rng.standard_normal((4, 1)).astype(np.float32)]
        x_dev = upload(*xs)
        ys = zeros(6, 4)
        compute.softmax_forward(x_dev, 2, [2, 4], [3, 1], ys)
        np.testing.assert_allclose(download(ys[0], 2, 3), softmax_columns(xs[0]), rtol=1e-5)
        np.testing.assert_allclose(download(ys[1], 4, 1), softmax_columns(xs[1]), rtol=1e-5)

    def test_large_logits_are_stable(self, compute, upload, zeros):
        (x,) = upload([1000.0, 1000.0])
        (y,) = zeros(2)
        compute.softmax_forward([x], 1, [2], [1], [y])
        np.testing.assert_allclose(y.to_host(), [0.5, 0.5])

    def test_backward(self, compute, upload, zeros, rng):
        x = rng.standard_normal((3, 2)).astype(np.float32)
        g = rng.standard_normal((3, 2)).astype(np.float32)
        x_dev, g_dev = upload(x, g)
        (y,) = zeros(6)
        compute.softmax_forward([x_dev], 1, [3], [2], [y])
        (gx,) = zeros(6)
        compute.softmax_backward([g_dev], [y], 1, [3], [2], [gx])

        s = softmax_columns(x.astype(np.float64))
        expected = s * (g - (g * s).sum(axis=0))
        np.testing.assert_allclose(download(gx, 3, 2), expected, rtol=1e-4, atol=1e-6)


class TestLayerNorm:
    """Tests for standard layer normalization."""

    def test_forward_keeps_sds(self, compute, upload, zeros, rng):
        xs = [rng.standard_normal((4, 2)).astype(np.float32),
              rng.standard_normal((4, 1)).astype(np.float32)]
        x_dev = upload(*xs)
        ys = zeros(8, 4)
        (sds,) = zeros(4)
        compute.normalization.standard_layer_norm_forward(x_dev, 2, 4, [2, 1], 2, ys, sds)

        y0 = download(ys[0], 4, 2)
        np.testing.assert_allclose(y0.mean(axis=0), [0, 0], atol=1e-5)
        np.testing.assert_allclose(y0.std(axis=0), [1, 1], rtol=1e-3)
        sd = sds.to_host()
        np.testing.assert_allclose(sd[:2], xs[0].std(axis=0), rtol=1e-3)
        np.testing.assert_allclose(sd[2], xs[1].std(), rtol=1e-3)

    def test_backward_matches_finite_difference(self, compute, upload, zeros, rng):
        x = rng.standard_normal((5, 1)).astype(np.float64)
        g = rng.standard_normal((5, 1)).astype(np.float64)
        x_dev, g_dev = upload(x, g)
        (y,) = zeros(5)
        (sds,) = zeros(1)
        compute.normalization.standard_layer_norm_forward([x_dev], 1, 5, [1], 1, [y], sds)
        (gx,) = zeros(5)
        compute.normalization.standard_layer_norm_backward([g_dev], 1, 5, [1], 1, [y], sds, [gx])

        def objective(v):
            normed = (v - v.mean()) / np.sqrt(v.var() + 1e-6)
            return float((normed * g[:, 0]).sum())

        h = 1e-4
        numeric = np.zeros(5)
        for k in range(5):
            bump = np.zeros(5)
            bump[k] = h
            numeric[k] = (objective(x[:, 0] + bump) - objective(x[:, 0] - bump)) / (2 * h)
        np.testing.assert_allclose(gx.to_host(), numeric, rtol=1e-2, atol=1e-3)
