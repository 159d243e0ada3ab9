"""
Utilities: verification and debug printing of device buffers.
"""

from .verification import assert_that, print_ints, print_nums, verify

__all__ = ["verify", "assert_that", "print_nums", "print_ints"]
