"""
Tests for the optimizers and DeviceParam.
"""

import numpy as np
import pytest

from raggedgpu.nn import DeviceParam
from raggedgpu.optim import Adagrad, Adam, AdamW, clip_grad_norm


@pytest.fixture
def make_param(core):
    """Factory for parameters with a given gradient already on the device."""

    def _make(values, grad=None, sparse=False, is_bias=False):
        values = np.asarray(values, dtype=np.float32)
        row, col = values.shape
        p = DeviceParam(values, row, col, is_bias=is_bias, sparse=sparse, core=core)
        if grad is not None:
            core.memcpy_htod(p.grad.ptr, np.asarray(grad, dtype=np.float32).reshape(-1))
        return p

    return _make


def touch(core, p, rows):
    mask = np.zeros(p.row, dtype=bool)
    mask[list(rows)] = True
    core.memcpy_htod(p.indexers.ptr, mask)


class TestDeviceParam:
    """Tests for the device parameter container."""

    def test_shape_mismatch(self, core):
        with pytest.raises(ValueError):
            DeviceParam(np.zeros(5), 2, 3, core=core)

    def test_round_trip_and_zero_grad(self, core, make_param):
        p = make_param([[1.0, 2.0], [3.0, 4.0]], grad=[1.0, 1.0, 1.0, 1.0])
        np.testing.assert_array_equal(p.to_host(), [[1.0, 2.0], [3.0, 4.0]])
        p.zero_grad()
        np.testing.assert_array_equal(p.grad_to_host(), 0.0)

    def test_sparse_state(self, core, make_param):
        p = make_param(np.zeros((4, 2)), sparse=True)
        assert p.touched_rows().size == 0
        touch(core, p, [1, 3])
        np.testing.assert_array_equal(p.touched_rows(), [1, 3])
        p.zero_grad()
        assert p.touched_rows().size == 0
        np.testing.assert_array_equal(p.iters.to_host(), 0)

    def test_dense_touches_every_row(self, make_param):
        p = make_param(np.zeros((3, 1)))
        np.testing.assert_array_equal(p.touched_rows(), [0, 1, 2])


class TestAdam:
    """Tests for the Adam optimizer."""

    def test_rejects_plain_arrays(self):
        with pytest.raises(TypeError):
            Adam([np.zeros(3)])

    def test_rejects_empty(self):
        with pytest.raises(ValueError):
            Adam([])

    def test_invalid_hyperparameters(self, make_param):
        p = make_param([[1.0]])
        with pytest.raises(ValueError):
            Adam([p], lr=-1.0)
        with pytest.raises(ValueError):
            Adam([p], betas=(0.9, 1.0))

    def test_first_step_moves_against_gradient(self, make_param):
        """Bias correction makes the first step roughly lr * sign(grad)."""
        p = make_param([[1.0, 1.0]], grad=[0.5, -2.0])
        opt = Adam([p], lr=0.1)
        opt.step()
        np.testing.assert_allclose(p.to_host(), [[0.9, 1.1]], atol=1e-4)
        assert opt.state[id(p)]["step"] == 1

    def test_step_returns_closure_loss(self, make_param):
        opt = Adam([make_param([[1.0]])])
        assert opt.step(lambda: 3.5) == 3.5

    def test_sparse_updates_touched_rows(self, core, make_param):
        p = make_param(np.ones((3, 2)), grad=np.ones(6), sparse=True)
        touch(core, p, [2])
        opt = Adam([p], lr=0.1)
        opt.step()
        host = p.to_host()
        np.testing.assert_array_equal(host[:2], 1.0)
        np.testing.assert_allclose(host[2], 0.9, atol=1e-4)
        np.testing.assert_array_equal(p.iters.to_host(), [0, 0, 1])

    def test_repeated_lookup_advances_counter_once(self, compute, upload, make_param):
        """Two lookups of the same row in one batch count as one step for that row."""
        p = make_param(np.ones((3, 2)), sparse=True)
        losses = upload([1.0, 1.0], [0.5, 0.5])
        compute.lookup_backward([1, 1], [True, True], losses, 2, 2, p.grad, p.indexers)
        np.testing.assert_array_equal(p.grad_to_host()[1], [1.5, 1.5])
        np.testing.assert_array_equal(p.touched_rows(), [1])

        Adam([p], lr=0.1).step()
        np.testing.assert_array_equal(p.iters.to_host(), [0, 1, 0])
        np.testing.assert_array_equal(p.to_host()[[0, 2]], 1.0)

    def test_state_dict_round_trip(self, make_param):
        p = make_param([[1.0, 2.0]], grad=[0.1, 0.2])
        opt = Adam([p], lr=0.05)
        opt.step()
        saved = opt.state_dict()
        assert saved["state"][0]["step"] == 1
        assert saved["param_groups"][0]["lr"] == 0.05

        q = make_param([[1.0, 2.0]], grad=[0.1, 0.2])
        restored = Adam([q], lr=0.05)
        restored.load_state_dict(saved)
        np.testing.assert_array_equal(
            restored.state[id(q)]["exp_avg"].to_host(), saved["state"][0]["exp_avg"]
        )
        assert restored.state[id(q)]["step"] == 1

    def test_release_clears_state(self, make_param):
        p = make_param([[1.0]], grad=[1.0])
        opt = Adam([p])
        opt.step()
        opt.release()
        assert opt.state[id(p)] == {}


class TestAdamW:
    """Tests for decoupled weight decay."""

    def test_zero_gradient_still_decays(self, make_param):
        p = make_param([[2.0]], grad=[0.0])
        AdamW([p], lr=0.1, weight_decay=0.5).step()
        np.testing.assert_allclose(p.to_host(), [[2.0 - 0.1 * 0.5 * 2.0]], rtol=1e-5)

    def test_bias_not_decayed(self, make_param):
        p = make_param([[2.0]], grad=[0.0], is_bias=True)
        AdamW([p], lr=0.1, weight_decay=0.5).step()
        np.testing.assert_allclose(p.to_host(), [[2.0]])


class TestAdagrad:
    """Tests for the Adagrad optimizer."""

    def test_step_sizes_shrink(self, make_param):
        p = make_param([[0.0]], grad=[1.0])
        opt = Adagrad([p], lr=0.1)
        opt.step()
        first = float(p.to_host()[0, 0])
        opt.step()
        second = float(p.to_host()[0, 0]) - first
        np.testing.assert_allclose(first, -0.1, rtol=1e-4)
        np.testing.assert_allclose(second, -0.1 / np.sqrt(2.0), rtol=1e-4)

    def test_sparse_skips_untouched(self, core, make_param):
        p = make_param(np.ones((2, 1)), grad=[1.0, 1.0], sparse=True)
        touch(core, p, [0])
        Adagrad([p], lr=0.1).step()
        np.testing.assert_allclose(p.to_host()[:, 0], [0.9, 1.0], rtol=1e-5)


class TestClipGradNorm:
    """Tests for global gradient norm clipping."""

    def test_clips_above_max(self, make_param):
        a = make_param([[0.0, 0.0]], grad=[3.0, 0.0])
        b = make_param([[0.0]], grad=[4.0])
        norm = clip_grad_norm([a, b], 1.0)
        assert norm == pytest.approx(5.0)
        np.testing.assert_allclose(a.grad_to_host(), [[0.6, 0.0]], rtol=1e-5)
        np.testing.assert_allclose(b.grad_to_host(), [[0.8]], rtol=1e-5)

    def test_below_max_untouched(self, make_param):
        a = make_param([[0.0]], grad=[0.5])
        assert clip_grad_norm([a], 1.0) == pytest.approx(0.5)
        np.testing.assert_array_equal(a.grad_to_host(), [[0.5]])

    def test_sparse_counts_touched_rows_only(self, core, make_param):
        p = make_param(np.zeros((2, 1)), grad=[3.0, 4.0], sparse=True)
        touch(core, p, [1])
        assert clip_grad_norm([p], 10.0) == pytest.approx(4.0)

    def test_empty(self):
        assert clip_grad_norm([], 1.0) == 0.0
