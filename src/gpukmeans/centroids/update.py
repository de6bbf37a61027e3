from __future__ import annotations

import logging

import torch

from gpukmeans.centroids.convergence import ConvergenceState
from gpukmeans.centroids.cpu_model import run_cpu_dispatch
from gpukmeans.centroids.errors import LookbackLivelockError
from gpukmeans.centroids.inputs import DispatchInputs, prepare_dispatch_inputs
from gpukmeans.centroids.status import (
    AGGREGATE_READY,
    AGGREGATE_SLOT,
    NOT_READY,
    PREFIX_READY,
    PREFIX_SLOT,
    SLOTS_PER_GROUP,
    STATUS_STRIDE,
)
from gpukmeans.centroids.workspace import LookbackWorkspace
from gpukmeans.config import KMeansConfig
from gpukmeans.kernels.triton.centroid_lookback import centroid_lookback_kernel
from gpukmeans.utils.dispatch import next_power_of_two


logger = logging.getLogger(__name__)


def _select_backend(cfg: KMeansConfig, pixels: torch.Tensor) -> str:
    if cfg.backend == "cpu":
        return "cpu"
    if cfg.backend == "triton":
        if not pixels.is_cuda or not torch.cuda.is_available():
            raise RuntimeError("Triton centroid update requires CUDA tensors")
        return "triton"
    return "triton" if pixels.is_cuda else "cpu"


@torch.no_grad()
def _launch_triton(inputs: DispatchInputs, ws: LookbackWorkspace, cfg: KMeansConfig) -> None:
    K = inputs.k
    epoch = ws.next_epoch()
    grid = (ws.n_groups,)
    centroid_lookback_kernel[grid](
        inputs.pixels, inputs.assignment, inputs.centroids, inputs.convergence,
        ws.flags, ws.slots, ws.livelock, ws.ticket,
        inputs.cluster, epoch, float(cfg.epsilon), inputs.n_pixels, int(cfg.max_spins),
        K=K,
        K_PAD=max(next_power_of_two(K), 2),
        N_SEQ=ws.n_seq,
        BLOCK=ws.block,
        NOT_READY=NOT_READY,
        AGGREGATE_READY=AGGREGATE_READY,
        PREFIX_READY=PREFIX_READY,
        STATUS_STRIDE=STATUS_STRIDE,
        PREFIX_SLOT=PREFIX_SLOT,
        AGGREGATE_SLOT=AGGREGATE_SLOT,
        SLOTS_PER_GROUP=SLOTS_PER_GROUP,
        EMPTY_POLICY=cfg.empty_policy_code,
        num_warps=int(cfg.num_warps),
    )
    # Host sync: the diagnostic is only meaningful once the dispatch finished
    if int(ws.livelock.item()) != 0:
        raise LookbackLivelockError(
            f"look-back spin bound {cfg.max_spins} exceeded (cluster {inputs.cluster}, epoch {epoch})"
        )


def update_centroid(
    *,
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    centroids: torch.Tensor,
    convergence: torch.Tensor,
    cluster: int,
    ws: LookbackWorkspace,
    cfg: KMeansConfig | None = None,
) -> None:
    """
    One dispatch: recompute centroid `cluster` as the mean color of its pixels
    and record whether it moved less than `cfg.epsilon`.

    pixels: float32 [H,W,4] or [N,4]
    assignment: int [H,W] or [N], cluster index per pixel
    centroids: float32 [K,4], updated in place
    convergence: int32 [K+1], updated in place; slot K is filled when cluster == K-1
    """
    cfg = (cfg or KMeansConfig()).validate()
    backend = _select_backend(cfg, pixels)
    if backend == "cpu":
        run_cpu_dispatch(
            pixels=pixels,
            assignment=assignment,
            centroids=centroids,
            convergence=convergence,
            cluster=cluster,
            ws=ws,
            cfg=cfg,
        )
        return

    if (ws.block, ws.n_seq) != (int(cfg.workgroup_size), int(cfg.n_seq)):
        raise ValueError(
            f"workspace block/n_seq={ws.block}/{ws.n_seq} do not match config "
            f"{cfg.workgroup_size}/{cfg.n_seq}"
        )
    inputs = prepare_dispatch_inputs(
        pixels=pixels,
        assignment=assignment,
        centroids=centroids,
        convergence=convergence,
        cluster=cluster,
        ws=ws,
    )
    _launch_triton(inputs, ws, cfg)
    logger.debug("triton dispatch cluster=%d epoch=%d groups=%d", inputs.cluster, ws.epoch, ws.n_groups)


def run_update_round(
    *,
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    centroids: torch.Tensor,
    state: ConvergenceState,
    ws: LookbackWorkspace,
    cfg: KMeansConfig | None = None,
) -> bool:
    """Dispatch clusters 0..K-1 in order; returns True when every cluster converged."""
    cfg = (cfg or KMeansConfig()).validate()
    K = int(centroids.shape[0])
    if state.k != K:
        raise ValueError(f"convergence state tracks {state.k} clusters, centroid table has {K}")

    for k in range(K):
        update_centroid(
            pixels=pixels,
            assignment=assignment,
            centroids=centroids,
            convergence=state.flags,
            cluster=k,
            ws=ws,
            cfg=cfg,
        )

    converged = state.converged_count()
    logger.info("update round finished: %d/%d clusters converged", converged, K)
    return converged == K
