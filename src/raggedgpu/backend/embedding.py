"""
Embedding lookup kernels.

The vocabulary table stores one row of ``dim`` contiguous numbers per id, the
layout the sparse optimizer kernels update row by row.
"""

from .base import BOOL_DTYPE, NUMBER_DTYPE, KernelMixin, is_null


class DeviceEmbedding(KernelMixin):
    """Vocabulary lookup and its sparse backward"""

    def __init__(self, core):
        """Initialize the instance."""

        self.core = core

    def _row(self, table, xid: int, dim: int):
        return self.core.view(int(table) + xid * dim * NUMBER_DTYPE.itemsize, dim, NUMBER_DTYPE)

    def lookup_forward(self, xids, vocabulary, count: int, dim: int, vals):
        """vals[i] = row ``xids[i]`` of the vocabulary table."""
        self._check("lookup_forward", count, xids=xids, vals=vals)
        with self._pointer_table(vals) as (y_table,):
            self.core.launch("lookup_forward", count)
            for i, xid in enumerate(xids):
                if xid < 0:
                    raise IndexError(f"lookup_forward: negative id {xid}")
                self._vec(y_table[i], dim)[:] = self._row(vocabulary, int(xid), dim)

    def lookup_backward(self, xids, should_backward, losses, count: int, dim: int, grad,
                        indexers=None):
        """
        Add item gradients into the rows they were read from.

        Args:
            xids: Vocabulary id per item
            should_backward: Per-item flags; items with a false flag are skipped
            losses: Item gradient pointers
            count: Number of items
            dim: Row width
            grad: Gradient table, same layout as the vocabulary
            indexers: Optional device bool buffer with one flag per vocabulary
                row; rows receiving a gradient are set to True
        """
        self._check("lookup_backward", count, xids=xids, should_backward=should_backward,
                    losses=losses)
        with self._pointer_table(losses) as (g_table,):
            self.core.launch("lookup_backward", count)
            for i, xid in enumerate(xids):
                if not should_backward[i]:
                    continue
                xid = int(xid)
                self._row(grad, xid, dim)[:] += self._vec(g_table[i], dim)
                if not is_null(indexers):
                    self.core.view(int(indexers) + xid * BOOL_DTYPE.itemsize, 1, BOOL_DTYPE)[0] = True
