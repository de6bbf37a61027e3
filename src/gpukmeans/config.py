from __future__ import annotations

from dataclasses import dataclass, fields, asdict
from pathlib import Path

import yaml

from gpukmeans.utils.constants import (
    DEFAULT_EPSILON,
    DEFAULT_MAX_SPINS,
    N_SEQ,
    WORKGROUP_SIZE,
)
from gpukmeans.utils.dispatch import is_power_of_two


_BACKENDS = ("auto", "triton", "cpu")
_SCHEDULES = ("in_order", "reverse", "random")
_EMPTY_POLICIES = ("keep", "not_converged", "converged")


@dataclass
class KMeansConfig:
    """Run parameters for the centroid update dispatches.

    backend:
      - "auto": Triton kernel for CUDA tensors, CPU model otherwise
      - "triton": always the Triton kernel (requires CUDA)
      - "cpu": always the CPU model

    schedule / seed only affect the CPU model: they pick the order in which
    groups are interleaved.

    empty_cluster_policy decides what a cluster with no assigned pixels writes
    to its convergence slot ("keep" leaves it untouched).
    """
    workgroup_size: int = WORKGROUP_SIZE
    n_seq: int = N_SEQ
    epsilon: float = DEFAULT_EPSILON
    backend: str = "auto"
    schedule: str = "in_order"
    seed: int = 0
    max_spins: int = DEFAULT_MAX_SPINS
    empty_cluster_policy: str = "not_converged"
    num_warps: int = 8

    def validate(self) -> "KMeansConfig":
        if not is_power_of_two(int(self.workgroup_size)):
            raise ValueError(f"workgroup_size must be a power of two, got {self.workgroup_size}")
        if int(self.n_seq) < 1:
            raise ValueError(f"n_seq must be >= 1, got {self.n_seq}")
        if not float(self.epsilon) > 0.0:
            raise ValueError(f"epsilon must be > 0, got {self.epsilon}")
        if self.backend not in _BACKENDS:
            raise ValueError(f"Unknown backend={self.backend!r}, expected one of {_BACKENDS}")
        if self.schedule not in _SCHEDULES:
            raise ValueError(f"Unknown schedule={self.schedule!r}, expected one of {_SCHEDULES}")
        if int(self.max_spins) < 1:
            raise ValueError(f"max_spins must be >= 1, got {self.max_spins}")
        if not is_power_of_two(int(self.num_warps)) or int(self.num_warps) > 32:
            raise ValueError(f"num_warps must be a power of two in [1, 32], got {self.num_warps}")
        if self.empty_cluster_policy not in _EMPTY_POLICIES:
            raise ValueError(
                f"Unknown empty_cluster_policy={self.empty_cluster_policy!r}, "
                f"expected one of {_EMPTY_POLICIES}"
            )
        return self

    @property
    def empty_policy_code(self) -> int:
        """Integer code passed to the kernel as a constexpr."""
        return _EMPTY_POLICIES.index(self.empty_cluster_policy)

    def to_dict(self) -> dict:
        return asdict(self)


def config_from_dict(data: dict | None) -> KMeansConfig:
    """Build a validated config from a dict, optionally nested under `kmeans:`."""
    data = dict(data or {})
    if "kmeans" in data and isinstance(data["kmeans"], dict):
        data = dict(data["kmeans"])

    known = {f.name for f in fields(KMeansConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown kmeans config keys: {unknown}")

    return KMeansConfig(**data).validate()


def load_config(config_path: str | Path) -> KMeansConfig:
    """Load a YAML configuration file."""
    with open(config_path, "r", encoding="utf-8") as f:
        return config_from_dict(yaml.safe_load(f))
