from __future__ import annotations

from dataclasses import dataclass

import torch


@dataclass
class ConvergenceState:
    """
    Convergence vector for K clusters: int32 [K + 1].

    flags[k] is 1 when cluster k converged in the current round, 0 otherwise.
    flags[K] holds the number of converged clusters once cluster K-1 was
    dispatched; a value of K stops further dispatches.
    """
    flags: torch.Tensor

    @staticmethod
    def allocate(device: torch.device | str, k: int) -> "ConvergenceState":
        if int(k) < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        return ConvergenceState(flags=torch.zeros((int(k) + 1,), device=device, dtype=torch.int32))

    @property
    def k(self) -> int:
        return int(self.flags.numel()) - 1

    def reset(self) -> None:
        """Start of a clustering run: nothing is known to be converged."""
        self.flags.zero_()

    def cluster_bits(self) -> torch.Tensor:
        return self.flags[: self.k]

    def converged_count(self) -> int:
        return int(self.flags[self.k].item())

    def all_converged(self) -> bool:
        return self.converged_count() == self.k
