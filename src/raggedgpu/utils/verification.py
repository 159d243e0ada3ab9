"""
Debug helpers for comparing host references against device buffers.
"""

import logging
from collections.abc import Callable

import numpy as np

from ..backend.base import INT_DTYPE, NUMBER_DTYPE, VerificationError, fatal

logger = logging.getLogger(__name__)


def verify(core, host, device_ptr, length: int, label: str = "", dtype=NUMBER_DTYPE,
           rtol: float = 1e-4, atol: float = 1e-5):
    """
    Compare ``length`` host values with the device buffer at ``device_ptr``.

    Args:
        core: Device context
        host: Expected values
        device_ptr: Device address (or array handle)
        length: Number of elements to compare
        label: Included in the error and the log line
        dtype: Element type of the device buffer
        rtol: Relative tolerance (floating types)
        atol: Absolute tolerance (floating types)

    Raises:
        VerificationError: At the first index that differs
    """
    expected = np.asarray(host, dtype=dtype).reshape(-1)[:length]
    actual = core.memcpy_dtoh(device_ptr, length, dtype)
    if np.issubdtype(np.dtype(dtype), np.floating):
        ok = np.isclose(actual, expected, rtol=rtol, atol=atol)
    else:
        ok = actual == expected
    bad = np.flatnonzero(~ok)
    if bad.size:
        index = int(bad[0])
        logger.error(
            f"verify {label or 'buffer'} mismatch at {index}: "
            f"host={expected[index]} device={actual[index]}"
        )
        raise VerificationError(index, label)


def assert_that(v: bool, message: str, call: Callable[[], None] | None = None):
    """Raise FatalDeviceError with ``message`` unless ``v``; ``call`` runs first (e.g. a dump)."""
    if v:
        return
    if call is not None:
        call()
    raise fatal(message)


def _format(core, ptr, length: int, dtype, label: str) -> str:
    values = core.memcpy_dtoh(ptr, length, dtype)
    text = " ".join(str(x) for x in values)
    return f"{label}: {text}" if label else text


def print_nums(core, ptr, length: int, label: str = "") -> str:
    """Log ``length`` numbers at ``ptr`` and return the formatted line."""
    line = _format(core, ptr, length, NUMBER_DTYPE, label)
    logger.info(line)
    return line


def print_ints(core, ptr, length: int, label: str = "") -> str:
    line = _format(core, ptr, length, INT_DTYPE, label)
    logger.info(line)
    return line
