from __future__ import annotations

from dataclasses import dataclass

import torch

from gpukmeans.centroids.workspace import LookbackWorkspace


@dataclass
class DispatchInputs:
    pixels: torch.Tensor       # float32 [n_pixels, 4]
    assignment: torch.Tensor   # int32 [n_pixels]
    centroids: torch.Tensor    # float32 [K, 4], the caller's tensor (mutated in place)
    convergence: torch.Tensor  # int32 [K + 1], the caller's tensor (mutated in place)
    cluster: int

    @property
    def n_pixels(self) -> int:
        return int(self.assignment.numel())

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])


def prepare_dispatch_inputs(
    *,
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    centroids: torch.Tensor,
    convergence: torch.Tensor,
    cluster: int,
    ws: LookbackWorkspace,
) -> DispatchInputs:
    """Validate one dispatch worth of buffers and flatten the pixel source.

    pixels: [H, W, 4] or [N, 4] RGBA float
    assignment: [H, W] or [N] integer cluster index per pixel
    """
    if pixels.ndim not in (2, 3) or pixels.shape[-1] != 4:
        raise ValueError(f"pixels must be [H,W,4] or [N,4], got shape={tuple(pixels.shape)}")
    px = pixels.reshape(-1, 4)
    if px.dtype != torch.float32:
        px = px.to(torch.float32)
    px = px.contiguous()

    a = assignment.reshape(-1)
    if a.dtype.is_floating_point or a.dtype == torch.bool:
        raise ValueError(f"assignment must be an integer tensor, got dtype={a.dtype}")
    if a.numel() != px.shape[0]:
        raise ValueError(f"assignment has {a.numel()} entries for {px.shape[0]} pixels")
    if a.dtype != torch.int32:
        a = a.to(torch.int32)
    a = a.contiguous()

    if centroids.ndim != 2 or centroids.shape[1] != 4 or centroids.dtype != torch.float32:
        raise ValueError(
            f"centroids must be float32 [K,4], got shape={tuple(centroids.shape)} dtype={centroids.dtype}"
        )
    if not centroids.is_contiguous():
        raise ValueError("centroids must be contiguous (it is updated in place)")
    K = int(centroids.shape[0])
    if K < 1:
        raise ValueError("centroids table is empty")

    if convergence.ndim != 1 or convergence.numel() != K + 1 or convergence.dtype != torch.int32:
        raise ValueError(
            f"convergence must be int32 [K+1]={K + 1}, got shape={tuple(convergence.shape)} dtype={convergence.dtype}"
        )
    if not (0 <= int(cluster) < K):
        raise ValueError(f"cluster={cluster} out of range for K={K}")

    if ws.n_pixels != px.shape[0]:
        raise ValueError(f"workspace sized for {ws.n_pixels} pixels, got {px.shape[0]}")

    devices = {px.device, a.device, centroids.device, convergence.device, ws.device}
    if len(devices) != 1:
        raise ValueError(f"all buffers must live on one device, got {sorted(str(d) for d in devices)}")

    return DispatchInputs(pixels=px, assignment=a, centroids=centroids, convergence=convergence, cluster=int(cluster))
