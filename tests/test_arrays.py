"""Tests for the owning device buffer and scalar handles."""

import copy
import pickle

import numpy as np
import pytest

from raggedgpu.backend.arrays import (
    BoolArray,
    DeviceInt,
    DeviceNumber,
    IntArray,
    NumberArray,
    NumberPointerArray,
    pointers,
)
from raggedgpu.backend.base import DeviceOwnershipError, FatalDeviceError


class TestNumberArray:
    """Tests for NumberArray ownership and transfers."""

    def test_round_trip(self, core, rng):
        host = rng.standard_normal(37).astype(np.float32)
        arr = NumberArray(core)
        arr.init(host)
        np.testing.assert_array_equal(arr.to_host(), host)
        assert len(arr) == 37
        assert arr.nbytes == 37 * 4

    def test_partial_upload(self, core):
        arr = NumberArray(core)
        arr.init(np.arange(10, dtype=np.float32), 4)
        np.testing.assert_array_equal(arr.to_host(), [0, 1, 2, 3])

    def test_length_larger_than_host_rejected(self, core):
        with pytest.raises(ValueError):
            NumberArray(core).init(np.zeros(3, dtype=np.float32), 5)

    def test_init_by_length(self, core):
        arr = NumberArray(core)
        arr.init(16)
        assert arr.initialized
        assert len(arr) == 16

    def test_reinit_frees_previous_block(self, core):
        arr = NumberArray(core)
        arr.init(64)
        first = arr.ptr
        arr.init(64)
        assert core.pool.get_stats()["live_blocks"] == 1
        assert arr.ptr == first

    def test_release_is_idempotent(self, core):
        arr = NumberArray(core)
        arr.init(8)
        arr.release()
        arr.release()
        assert not arr.initialized
        assert core.pool.get_stats()["live_blocks"] == 0

    def test_to_host_uninitialized_is_fatal(self, core):
        with pytest.raises(FatalDeviceError):
            NumberArray(core).to_host()

    def test_garbage_collection_returns_block(self, core):
        arr = NumberArray(core)
        arr.init(8)
        del arr
        assert core.pool.get_stats()["live_blocks"] == 0

    def test_offset(self, core):
        arr = NumberArray(core)
        arr.init(np.arange(8, dtype=np.float32))
        assert arr.offset(3) == arr.ptr + 12
        with pytest.raises(IndexError):
            arr.offset(9)

    @pytest.mark.parametrize("clone", [copy.copy, copy.deepcopy, pickle.dumps])
    def test_cannot_be_copied(self, core, clone):
        arr = NumberArray(core)
        arr.init(4)
        with pytest.raises(DeviceOwnershipError):
            clone(arr)

    @pytest.mark.parametrize("kind", [NumberArray, IntArray, DeviceNumber, DeviceInt])
    def test_cannot_be_built_from_another_handle(self, core, kind):
        source = NumberArray(core)
        source.init(4)
        with pytest.raises(DeviceOwnershipError):
            kind(source)
        assert source.to_host().shape == (4,)

    def test_handle_outlives_context(self):
        from raggedgpu.backend.core import DeviceCore

        device = DeviceCore()
        arr = NumberArray(device)
        arr.init(4)
        device.shutdown()
        arr.release()
        assert not arr.initialized


class TestTypedArrays:
    """Tests for bool, int and pointer arrays."""

    def test_bool_and_int_round_trip(self, core):
        flags = BoolArray(core)
        flags.init([True, False, True])
        ints = IntArray(core)
        ints.init([3, -1, 7])
        np.testing.assert_array_equal(flags.to_host(), [True, False, True])
        np.testing.assert_array_equal(ints.to_host(), [3, -1, 7])

    def test_pointer_array_accepts_handles(self, core):
        a = NumberArray(core)
        a.init(2)
        b = NumberArray(core)
        b.init(2)
        table = NumberPointerArray(core)
        table.init([a, None, b.ptr])
        np.testing.assert_array_equal(table.to_host(), [a.ptr, 0, b.ptr])
        assert pointers([a, b]) == [a.ptr, b.ptr]
        assert int(a) == a.ptr


class TestDeviceScalars:
    """Tests for DeviceNumber / DeviceInt host shadows."""

    def test_number_round_trip(self, core):
        n = DeviceNumber(core)
        n.init()
        n.v = 2.5
        n.copy_from_host_to_device()
        n.v = 0.0
        n.copy_from_device_to_host()
        assert n.v == pytest.approx(2.5)

    def test_shadow_is_explicit(self, core):
        i = DeviceInt(core)
        i.init()
        i.v = 5
        i.copy_from_host_to_device()
        core.view(i.ptr, 1, np.int32)[0] = 9
        assert i.v == 5
        i.copy_from_device_to_host()
        assert i.v == 9

    def test_use_before_init_is_fatal(self, core):
        with pytest.raises(FatalDeviceError):
            DeviceNumber(core).copy_from_device_to_host()
