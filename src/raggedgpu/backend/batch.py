"""
Batch descriptors for ragged kernel launches.

A batched call describes ``count`` items through parallel sequences: one
device pointer per item plus per-item dimensions. The sequences must agree
with ``count``; this module validates that at the API boundary.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .base import BatchShapeError


def check_batch(count: int, op: str = "kernel", **sequences):
    """
    Validate the parallel sequences of one batched call.

    Args:
        count: Number of batch items
        op: Kernel name used in error messages
        **sequences: ``name=seq`` pairs that must each hold ``count`` entries,
            or ``name=(seq, expected_len)`` for sequences of another length
            (e.g. ``count * in_count`` input pointers)

    Raises:
        BatchShapeError: If a length disagrees or a dimension is negative
    """
    if count < 0:
        raise BatchShapeError(f"{op}: negative batch count {count}")
    for name, value in sequences.items():
        if (
            isinstance(value, tuple)
            and len(value) == 2
            and isinstance(value[0], (Sequence, np.ndarray))
            and isinstance(value[1], (int, np.integer))
        ):
            seq, expected = value
        else:
            seq, expected = value, count
        if len(seq) != expected:
            raise BatchShapeError(f"{op}: {name} has {len(seq)} entries, expected {expected}")
        if name.endswith("dims") or name in ("rows", "cols", "in_counts", "ks"):
            for i in range(expected):
                if seq[i] < 0:
                    raise BatchShapeError(f"{op}: {name}[{i}] is negative ({seq[i]})")


@dataclass(frozen=True)
class BatchView:
    """Sequence of ``(pointer, length)`` pairs for one batched operand."""

    ptrs: tuple
    dims: tuple

    def __post_init__(self):
        if len(self.ptrs) != len(self.dims):
            raise BatchShapeError(
                f"BatchView has {len(self.ptrs)} pointers but {len(self.dims)} dims"
            )
        for i, d in enumerate(self.dims):
            if d < 0:
                raise BatchShapeError(f"BatchView dims[{i}] is negative ({d})")

    @classmethod
    def of(cls, ptrs: Sequence, dims: Sequence[int] | int) -> "BatchView":
        """Build a view; an int ``dims`` applies to every item."""
        if isinstance(dims, int):
            dims = [dims] * len(ptrs)
        return cls(tuple(int(p) for p in ptrs), tuple(int(d) for d in dims))

    @property
    def count(self) -> int:
        return len(self.ptrs)

    def offsets(self) -> list[int]:
        """Start of each item in the concatenated element space."""
        result, acc = [], 0
        for d in self.dims:
            result.append(acc)
            acc += d
        return result

    def __len__(self):
        return len(self.ptrs)

    def __iter__(self):
        return iter(zip(self.ptrs, self.dims))
