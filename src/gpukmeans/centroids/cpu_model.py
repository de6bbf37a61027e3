from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator
import logging

import torch

from gpukmeans.centroids.errors import LookbackLivelockError
from gpukmeans.centroids.inputs import DispatchInputs, prepare_dispatch_inputs
from gpukmeans.centroids.status import (
    AGGREGATE_READY,
    AGGREGATE_SLOT,
    NOT_READY,
    PREFIX_READY,
    PREFIX_SLOT,
    decode_flag,
    encode_flag,
)
from gpukmeans.centroids.workspace import LookbackWorkspace
from gpukmeans.config import KMeansConfig


logger = logging.getLogger(__name__)


class _Step(Enum):
    PROGRESS = 0
    SPIN = 1


@dataclass
class DispatchReport:
    """What one modelled dispatch did.

    resolved_order: groups in the order their inclusive prefix was published
    lookback_depth: per group, how many predecessors the look-back visited
    """
    early_exit: bool
    grand_total: torch.Tensor | None = None
    resolved_order: list[int] = field(default_factory=list)
    lookback_depth: dict[int, int] = field(default_factory=dict)
    rounds: int = 0


def masked_lane_values(
    pixels: torch.Tensor,     # float32 [N, 4]
    assignment: torch.Tensor, # int [N]
    cluster: int,
    group: int,
    block: int,
    n_seq: int,
) -> torch.Tensor:
    """Per-worker (r, g, b, count) over the pixels of `group` assigned to `cluster`.

    Worker i of the group folds pixels [i * n_seq, (i + 1) * n_seq) in order;
    indices past the image contribute nothing.
    """
    n = int(assignment.numel())
    lanes = torch.arange(block, dtype=torch.int64)
    idx = (group * block + lanes)[:, None] * n_seq + torch.arange(n_seq, dtype=torch.int64)[None, :]
    inside = idx < n
    safe = torch.where(inside, idx, torch.zeros_like(idx))
    hit = inside & (assignment[safe] == int(cluster))

    val = pixels[safe].clone()  # [block, n_seq, 4]
    val[..., 3] = 1.0
    val = torch.where(hit[..., None], val, torch.zeros_like(val))

    acc = torch.zeros((block, 4), dtype=torch.float32)
    for j in range(n_seq):
        acc += val[:, j]
    return acc


def hillis_steele_inclusive_scan(values: torch.Tensor) -> torch.Tensor:
    """
    Inclusive scan along dim 0 by doubling steps 1, 2, 4, ...
    Each step reads only the previous step's state (the barrier pair around it).
    """
    s = values.clone()
    step = 1
    while step < s.shape[0]:
        prev = torch.cat([torch.zeros_like(s[:step]), s[:-step]], dim=0)
        s = s + prev
        step *= 2
    return s


class _DispatchModel:
    def __init__(self, inputs: DispatchInputs, ws: LookbackWorkspace, cfg: KMeansConfig) -> None:
        self.inputs = inputs
        self.ws = ws
        self.cfg = cfg
        self.epoch = ws.epoch
        self.report = DispatchReport(early_exit=False)
        self._exited: set[int] = set()
        self._gen = torch.Generator(device="cpu")
        self._gen.manual_seed(int(cfg.seed) + self.epoch)

    def _status(self, group: int) -> int:
        return decode_flag(int(self.ws.flags[group]), self.epoch)

    def _publish(self, group: int, status: int) -> None:
        self.ws.flags[group] = encode_flag(self.epoch, status)

    def _group(self, g: int) -> Iterator[_Step]:
        ws, inp = self.ws, self.inputs
        K = inp.k

        if int(inp.convergence[K]) == K:
            self._exited.add(g)
            return

        self._publish(g, NOT_READY)
        yield _Step.PROGRESS

        values = masked_lane_values(inp.pixels, inp.assignment, inp.cluster, g, ws.block, ws.n_seq)
        scan = hillis_steele_inclusive_scan(values)
        local_total = scan[-1]

        ws.slots[g, AGGREGATE_SLOT:AGGREGATE_SLOT + 4] = local_total
        if g == 0:
            ws.slots[g, PREFIX_SLOT:PREFIX_SLOT + 4] = local_total
            self._publish(g, PREFIX_READY)
            self.report.resolved_order.append(g)
            self.report.lookback_depth[g] = 0
        else:
            self._publish(g, AGGREGATE_READY)
        yield _Step.PROGRESS

        exclusive = torch.zeros((4,), dtype=torch.float32)
        if g > 0:
            look = g - 1
            spins = 0
            while True:
                status = self._status(look)
                if status == PREFIX_READY:
                    exclusive = exclusive + ws.slots[look, PREFIX_SLOT:PREFIX_SLOT + 4]
                    yield _Step.PROGRESS
                    break
                if status == AGGREGATE_READY:
                    exclusive = exclusive + ws.slots[look, AGGREGATE_SLOT:AGGREGATE_SLOT + 4]
                    look -= 1
                    yield _Step.PROGRESS
                    continue
                spins += 1
                if spins >= self.cfg.max_spins:
                    ws.livelock[0] = 1
                    raise LookbackLivelockError(
                        f"group {g} spun {spins} times on group {look} (epoch {self.epoch})"
                    )
                yield _Step.SPIN

            self.report.lookback_depth[g] = g - look
            ws.slots[g, PREFIX_SLOT:PREFIX_SLOT + 4] = exclusive + local_total
            self._publish(g, PREFIX_READY)
            self.report.resolved_order.append(g)
            yield _Step.PROGRESS

        if g == ws.n_groups - 1:
            self._finalize(exclusive + local_total)

    def _finalize(self, total: torch.Tensor) -> None:
        inp = self.inputs
        K, k = inp.k, inp.cluster
        self.report.grand_total = total.clone()

        count = total[3]
        bit = None
        if float(count) > 0.0:
            new = total / count
            prev = inp.centroids[k].detach().to("cpu", torch.float32)
            dist = float(torch.linalg.norm(new - prev))
            inp.centroids[k] = new.to(inp.centroids.device)
            bit = 1 if dist < float(self.cfg.epsilon) else 0
            logger.debug("cluster %d: count=%d dist=%.6g converged=%d", k, int(count), dist, bit)
        elif self.cfg.empty_cluster_policy == "not_converged":
            bit = 0
        elif self.cfg.empty_cluster_policy == "converged":
            bit = 1

        if bit is not None:
            inp.convergence[k] = bit
        if k == K - 1:
            inp.convergence[K] = int(inp.convergence[:K].sum())

    def _round_order(self, live: list[int]) -> list[int]:
        if self.cfg.schedule == "in_order":
            return sorted(live)
        if self.cfg.schedule == "reverse":
            return sorted(live, reverse=True)
        # random: a random non-empty subset of the live groups, in random order
        perm = torch.randperm(len(live), generator=self._gen).tolist()
        take = int(torch.randint(1, len(live) + 1, (1,), generator=self._gen))
        return [live[i] for i in perm[:take]]

    def run(self) -> DispatchReport:
        programs = {g: self._group(g) for g in range(self.ws.n_groups)}
        live = list(programs)
        while live:
            self.report.rounds += 1
            progressed = False
            order = self._round_order(live)
            stepped_all = len(order) == len(live)
            for g in order:
                try:
                    step = next(programs[g])
                except StopIteration:
                    live.remove(g)
                    progressed = True
                    continue
                if step is _Step.PROGRESS:
                    progressed = True
            if live and stepped_all and not progressed:
                self.ws.livelock[0] = 1
                raise LookbackLivelockError(
                    f"no group made progress in round {self.report.rounds}; spinning groups: {sorted(live)}"
                )

        self.report.early_exit = len(self._exited) == self.ws.n_groups
        return self.report


@torch.no_grad()
def run_cpu_dispatch(
    *,
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    centroids: torch.Tensor,
    convergence: torch.Tensor,
    cluster: int,
    ws: LookbackWorkspace,
    cfg: KMeansConfig | None = None,
) -> DispatchReport:
    """Model one centroid-update dispatch on CPU tensors.

    Groups are interleaved according to `cfg.schedule`; every interaction with
    the flags / slots is a scheduling point. Mutates `centroids`,
    `convergence` and the workspace exactly like the Triton kernel.
    """
    cfg = (cfg or KMeansConfig()).validate()
    if ws.device.type != "cpu":
        raise ValueError(f"CPU model needs a CPU workspace, got {ws.device}")
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
    ws.next_epoch()
    report = _DispatchModel(inputs, ws, cfg).run()
    logger.debug(
        "cpu dispatch cluster=%d epoch=%d groups=%d rounds=%d early_exit=%s",
        inputs.cluster, ws.epoch, ws.n_groups, report.rounds, report.early_exit,
    )
    return report
