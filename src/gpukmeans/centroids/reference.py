from __future__ import annotations

import torch


def _flat(pixels: torch.Tensor, assignment: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    px = pixels.detach().reshape(-1, 4).to("cpu", torch.float64)
    a = assignment.detach().reshape(-1).to("cpu", torch.int64)
    return px, a


def reference_cluster_total(pixels: torch.Tensor, assignment: torch.Tensor, cluster: int) -> torch.Tensor:
    """Sequential float64 sum of (r, g, b, 1) over pixels assigned to `cluster`, in pixel order."""
    px, a = _flat(pixels, assignment)
    vals = px.clone()
    vals[:, 3] = 1.0
    vals = torch.where((a == int(cluster))[:, None], vals, torch.zeros_like(vals))
    if vals.shape[0] == 0:
        return torch.zeros((4,), dtype=torch.float64)
    return torch.cumsum(vals, dim=0)[-1]


def reference_group_totals(
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    cluster: int,
    *,
    block: int,
    n_seq: int,
) -> torch.Tensor:
    """float64 [n_groups, 4]: per-group local aggregates for a dispatch of `block * n_seq` pixels per group."""
    px, a = _flat(pixels, assignment)
    per_group = int(block) * int(n_seq)
    n_groups = (a.numel() + per_group - 1) // per_group
    out = torch.zeros((n_groups, 4), dtype=torch.float64)
    for g in range(n_groups):
        sl = slice(g * per_group, (g + 1) * per_group)
        out[g] = reference_cluster_total(px[sl], a[sl], cluster)
    return out


def reference_update(
    *,
    pixels: torch.Tensor,
    assignment: torch.Tensor,
    centroids: torch.Tensor,
    convergence: torch.Tensor,
    cluster: int,
    epsilon: float,
    empty_cluster_policy: str = "not_converged",
) -> tuple[torch.Tensor, torch.Tensor]:
    """Expected (centroids, convergence) after one dispatch; inputs are not modified."""
    new_c = centroids.detach().to("cpu").clone()
    new_v = convergence.detach().to("cpu").clone()
    K = int(new_c.shape[0])
    if int(new_v[K]) == K:
        return new_c, new_v

    total = reference_cluster_total(pixels, assignment, cluster)
    if total[3] > 0:
        mean = total / total[3]
        dist = float(torch.linalg.norm(mean - new_c[cluster].to(torch.float64)))
        new_c[cluster] = mean.to(new_c.dtype)
        new_v[cluster] = 1 if dist < float(epsilon) else 0
    elif empty_cluster_policy == "not_converged":
        new_v[cluster] = 0
    elif empty_cluster_policy == "converged":
        new_v[cluster] = 1

    if int(cluster) == K - 1:
        new_v[K] = int(new_v[:K].sum())
    return new_c, new_v
