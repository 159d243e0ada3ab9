"""
Loss kernels and prediction helpers.

Loss kernels return the aggregate loss to the host and add their gradient
into the per-item ``losses`` buffers, which seed the backward pass.
"""

import numpy as np

from .base import INT_DTYPE, NUMBER_DTYPE, KernelMixin
from .normalization import _softmax_columns


class DeviceLoss(KernelMixin):
    """Cross-entropy family losses and argmax prediction"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def cross_entropy_loss(self, vals, answers, count: int, batchsize: float, losses,
                           dim: int | None = None) -> float:
        """
        Negative log-likelihood of already normalized probabilities.

        Args:
            vals: Probability vector pointers
            answers: Gold index per item
            count: Number of items
            batchsize: Loss and gradient are divided by this
            losses: Gradient pointers; only the gold entry is touched
            dim: Item length; when given, gold indexes must be below it

        Returns:
            ``sum_i -log(vals[i][answers[i]]) / batchsize``, inf when a gold
            probability is zero
        """
        self._check("cross_entropy_loss", count, vals=vals, answers=answers, losses=losses)
        for i, a in enumerate(answers):
            if a < 0 or (dim is not None and a >= dim):
                raise IndexError(f"cross_entropy_loss: gold index {a} out of range for item {i}")
        total = np.float64(0.0)
        with self._pointer_table(vals, losses) as (p_table, g_table):
            self.core.launch("cross_entropy_loss", count)
            for i, a in enumerate(answers):
                a = int(a)
                p = np.float64(self._vec(p_table[i], a + 1)[a])
                with np.errstate(divide="ignore"):
                    total -= np.log(p)
                    grad = np.divide(-1.0, p * batchsize)
                self._vec(g_table[i], a + 1)[a] += grad
        return float(total / batchsize)

    def softmax_loss(self, vals, count: int, dim: int, gold_answers, batchsize: int,
                     losses) -> tuple[float, list[int]]:
        """
        Softmax followed by cross-entropy over raw scores.

        Gradient ``(softmax - onehot(gold)) / batchsize`` is added into
        losses[i].

        Returns:
            ``(loss, predictions)``, the argmax of every item in predictions
        """
        self._check("softmax_loss", count, vals=vals, gold_answers=gold_answers, losses=losses)
        total = 0.0
        predictions = []
        with self._pointer_table(vals, losses) as (x_table, g_table):
            self.core.launch("softmax_loss", count)
            for i, gold in enumerate(gold_answers):
                gold = int(gold)
                x = self._vec(x_table[i], dim)
                probs = _softmax_columns(x.astype(np.float64)[:, None])[:, 0]
                predictions.append(int(np.argmax(x)))
                total -= np.log(probs[gold])
                grad = probs.copy()
                grad[gold] -= 1.0
                self._vec(g_table[i], dim)[:] += (grad / batchsize).astype(NUMBER_DTYPE)
        return float(total / batchsize), predictions

    def multi_cross_entropy_loss(self, vals, answers, count: int, dim: int, factor: float,
                                 losses) -> float:
        """
        Independent binary cross-entropy per element.

        Args:
            vals: Probability pointers (e.g. sigmoid outputs)
            answers: Per-item 0/1 label sequences of ``dim`` entries
            factor: Scale applied to loss and gradient
        """
        self._check("multi_cross_entropy_loss", count, vals=vals, answers=answers,
                    losses=losses)
        total = 0.0
        with self._pointer_table(vals, losses) as (p_table, g_table):
            self.core.launch("multi_cross_entropy_loss", count)
            for i in range(count):
                a = np.asarray(answers[i], dtype=np.float64)
                p = self._vec(p_table[i], dim).astype(np.float64)
                total -= np.sum(a * np.log(p) + (1.0 - a) * np.log(1.0 - p))
                grad = ((1.0 - a) / (1.0 - p) - a / p) * factor
                self._vec(g_table[i], dim)[:] += grad.astype(NUMBER_DTYPE)
        return float(total * factor)

    def kl_cross_entropy_loss(self, vals, answers, count: int, dim: int, factor: float,
                              losses) -> float:
        """
        KL divergence ``sum a * log(a / p)`` from target distributions ``answers``.

        Zero targets contribute nothing; the gradient is ``-a / p * factor``.
        """
        self._check("kl_cross_entropy_loss", count, vals=vals, answers=answers, losses=losses)
        total = 0.0
        with self._pointer_table(vals, losses) as (p_table, g_table):
            self.core.launch("kl_cross_entropy_loss", count)
            for i in range(count):
                a = np.asarray(answers[i], dtype=np.float64)
                p = self._vec(p_table[i], dim).astype(np.float64)
                nonzero = a > 0
                total += np.sum(a[nonzero] * np.log(a[nonzero] / p[nonzero]))
                self._vec(g_table[i], dim)[:] += (-a / p * factor).astype(NUMBER_DTYPE)
        return float(total * factor)

    def predict(self, vals, count: int, dim: int) -> list[int]:
        """Argmax of every item."""
        self._check("predict", count, vals=vals)
        with self._pointer_table(vals) as (table,):
            self.core.launch("predict", count)
            return [int(np.argmax(self._vec(table[i], dim))) for i in range(count)]

    def predict_one(self, val, dim: int) -> int:
        self.core.launch("predict", 1)
        return int(np.argmax(self._vec(val, dim)))

    def max(self, v, count: int, dim: int, max_indexes, max_vals):
        """Write the argmax and max of every item to device buffers of ``count`` entries."""
        self._check("max", count, v=v)
        with self._pointer_table(v) as (table,):
            self.core.launch("max", count)
            idx = self._ints(max_indexes, count)
            out = self._vec(max_vals, count)
            for i in range(count):
                x = self._vec(table[i], dim)
                k = int(np.argmax(x))
                idx[i] = INT_DTYPE.type(k)
                out[i] = x[k]
