from __future__ import annotations

from dataclasses import dataclass
import logging

import torch

from gpukmeans.centroids.status import MAX_EPOCH, SLOTS_PER_GROUP
from gpukmeans.utils.constants import N_SEQ, WORKGROUP_SIZE
from gpukmeans.utils.dispatch import compute_work_group_count, is_power_of_two


logger = logging.getLogger(__name__)


@dataclass
class LookbackWorkspace:
    """
    Dispatch-local scratch for the decoupled look-back over `n_pixels` pixels.
    Reused across every dispatch of a clustering run; `next_epoch` invalidates
    the flags left behind by the previous dispatch.
    """
    n_pixels: int
    block: int
    n_seq: int
    flags: torch.Tensor     # int32 [n_groups]
    slots: torch.Tensor     # float32 [n_groups, SLOTS_PER_GROUP]
    livelock: torch.Tensor  # int32 [1]; nonzero once a look-back spin bound was hit
    ticket: torch.Tensor    # int32 [1]; next logical group index handed to a starting program
    epoch: int = 0

    @staticmethod
    def allocate(
        device: torch.device | str,
        n_pixels: int,
        block: int = WORKGROUP_SIZE,
        n_seq: int = N_SEQ,
    ) -> "LookbackWorkspace":
        if int(n_pixels) < 1:
            raise ValueError(f"n_pixels must be >= 1, got {n_pixels}")
        if not is_power_of_two(int(block)):
            raise ValueError(f"block must be a power of two, got {block}")
        if int(n_seq) < 1:
            raise ValueError(f"n_seq must be >= 1, got {n_seq}")

        device = torch.device(device)
        n_groups, _ = compute_work_group_count((int(n_pixels), 1), (int(block) * int(n_seq), 1))
        logger.debug("allocating look-back workspace: %d pixels, %d groups on %s", n_pixels, n_groups, device)
        return LookbackWorkspace(
            n_pixels=int(n_pixels),
            block=int(block),
            n_seq=int(n_seq),
            flags=torch.zeros((n_groups,), device=device, dtype=torch.int32),
            slots=torch.zeros((n_groups, SLOTS_PER_GROUP), device=device, dtype=torch.float32),
            livelock=torch.zeros((1,), device=device, dtype=torch.int32),
            ticket=torch.zeros((1,), device=device, dtype=torch.int32),
        )

    @property
    def n_groups(self) -> int:
        return int(self.flags.numel())

    @property
    def device(self) -> torch.device:
        return self.flags.device

    def next_epoch(self) -> int:
        """Advance to a fresh dispatch epoch; clears the livelock diagnostic and the group ticket."""
        self.epoch += 1
        if self.epoch > MAX_EPOCH:
            # Flag words would overflow int32: restart the epoch sequence on zeroed flags
            self.flags.zero_()
            self.epoch = 1
        self.livelock.zero_()
        self.ticket.zero_()
        return self.epoch
