from __future__ import annotations

import pytest
import torch

from gpukmeans.centroids import ConvergenceState, LookbackWorkspace
from gpukmeans.centroids.status import (
    AGGREGATE_READY,
    MAX_EPOCH,
    NOT_READY,
    PREFIX_READY,
    decode_flag,
    encode_flag,
)
from gpukmeans.utils.dispatch import compute_work_group_count, is_power_of_two, next_power_of_two


class TestDispatchHelpers:

    def test_work_group_count_rounds_up(self):
        assert compute_work_group_count((1024, 1), (256, 1)) == (4, 1)
        assert compute_work_group_count((1025, 1), (256, 1)) == (5, 1)
        assert compute_work_group_count((640, 480), (16, 16)) == (40, 30)

    def test_power_of_two_helpers(self):
        assert [next_power_of_two(n) for n in (0, 1, 2, 3, 5, 256, 257)] == [1, 1, 2, 4, 8, 256, 512]
        assert is_power_of_two(256)
        assert not is_power_of_two(0)
        assert not is_power_of_two(24)


class TestFlagWords:

    def test_roundtrip_in_current_epoch(self):
        for status in (NOT_READY, AGGREGATE_READY, PREFIX_READY):
            assert decode_flag(encode_flag(9, status), 9) == status

    def test_previous_epoch_reads_not_ready(self):
        stale = encode_flag(8, PREFIX_READY)
        assert decode_flag(stale, 9) == NOT_READY
        assert decode_flag(0, 1) == NOT_READY

    def test_max_epoch_fits_int32(self):
        assert encode_flag(MAX_EPOCH, PREFIX_READY) <= 2**31 - 1


class TestLookbackWorkspace:

    def test_group_count(self):
        ws = LookbackWorkspace.allocate("cpu", 640 * 480)
        assert ws.n_groups == (640 * 480 + 256 * 24 - 1) // (256 * 24)
        assert ws.slots.shape == (ws.n_groups, 8)
        assert ws.flags.dtype == torch.int32

    @pytest.mark.parametrize("kwargs", [
        dict(n_pixels=0),
        dict(n_pixels=10, block=24),
        dict(n_pixels=10, n_seq=0),
    ])
    def test_invalid_allocation(self, kwargs):
        with pytest.raises(ValueError):
            LookbackWorkspace.allocate("cpu", **kwargs)

    def test_next_epoch_clears_livelock_and_ticket(self):
        ws = LookbackWorkspace.allocate("cpu", 10)
        ws.livelock[0] = 1
        ws.ticket[0] = 7
        assert ws.next_epoch() == 1
        assert ws.next_epoch() == 2
        assert int(ws.livelock[0]) == 0
        assert int(ws.ticket[0]) == 0

    def test_epoch_wraps_on_zeroed_flags(self):
        ws = LookbackWorkspace.allocate("cpu", 10, block=2, n_seq=1)
        ws.epoch = MAX_EPOCH
        ws.flags.fill_(encode_flag(MAX_EPOCH, PREFIX_READY))

        assert ws.next_epoch() == 1
        assert int(ws.flags.abs().sum()) == 0


class TestConvergenceState:

    def test_allocate_and_query(self):
        state = ConvergenceState.allocate("cpu", 3)
        assert state.k == 3
        assert state.flags.shape == (4,)
        state.flags[:] = torch.tensor([1, 0, 1, 2], dtype=torch.int32)
        assert state.cluster_bits().tolist() == [1, 0, 1]
        assert state.converged_count() == 2
        assert not state.all_converged()

        state.reset()
        assert state.flags.tolist() == [0, 0, 0, 0]

    def test_needs_one_cluster(self):
        with pytest.raises(ValueError):
            ConvergenceState.allocate("cpu", 0)
