from __future__ import annotations

import pytest
import torch

from gpukmeans.centroids import (
    ConvergenceState,
    LookbackWorkspace,
    reference_update,
    run_update_round,
    update_centroid,
)
from gpukmeans.config import KMeansConfig


pytestmark = pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA required")


def _random_problem(H: int, W: int, K: int, seed: int):
    g = torch.Generator(device="cpu")
    g.manual_seed(seed)
    pixels = torch.rand((H, W, 4), generator=g)
    assignment = torch.randint(0, K, (H, W), generator=g, dtype=torch.int32)
    centroids = torch.rand((K, 4), generator=g)
    return pixels, assignment, centroids


class TestTritonCentroidUpdate:

    @pytest.mark.parametrize("H,W,K", [(2, 2, 1), (64, 64, 3), (480, 640, 8), (333, 517, 5)])
    def test_matches_reference(self, H, W, K):
        device = "cuda"
        cfg = KMeansConfig(backend="triton", epsilon=0.01)
        pixels, assignment, centroids = _random_problem(H, W, K, seed=H * W + K)
        convergence = torch.zeros((K + 1,), dtype=torch.int32)
        ws = LookbackWorkspace.allocate(device, H * W)

        c_dev = centroids.to(device)
        v_dev = convergence.to(device)
        px_dev, a_dev = pixels.to(device), assignment.to(device)
        for cluster in range(K):
            exp_c, exp_v = reference_update(
                pixels=pixels, assignment=assignment, centroids=centroids, convergence=convergence,
                cluster=cluster, epsilon=cfg.epsilon,
            )
            update_centroid(
                pixels=px_dev, assignment=a_dev, centroids=c_dev,
                convergence=v_dev, cluster=cluster, ws=ws, cfg=cfg,
            )
            torch.cuda.synchronize()
            torch.testing.assert_close(c_dev.cpu(), exp_c, rtol=1e-4, atol=1e-5)
            assert torch.equal(v_dev.cpu(), exp_v)
            centroids, convergence = exp_c, exp_v

    def test_many_groups_count_every_pixel(self):
        device = "cuda"
        cfg = KMeansConfig(backend="triton", n_seq=1)
        n = 256 * 257
        pixels = torch.ones((n, 4), device=device)
        assignment = torch.zeros((n,), device=device, dtype=torch.int32)
        centroids = torch.zeros((1, 4), device=device)
        convergence = torch.zeros((2,), device=device, dtype=torch.int32)
        ws = LookbackWorkspace.allocate(device, n, block=256, n_seq=1)

        update_centroid(
            pixels=pixels, assignment=assignment, centroids=centroids,
            convergence=convergence, cluster=0, ws=ws, cfg=cfg,
        )

        # every program drew exactly one group ticket
        assert int(ws.ticket[0]) == ws.n_groups
        # inclusive prefix of the last group is the grand total
        assert ws.slots[-1, 3].item() == float(n)
        torch.testing.assert_close(centroids[0].cpu(), torch.ones(4))

    @pytest.mark.parametrize("policy,prior,expected", [("keep", 1, 1), ("not_converged", 1, 0), ("converged", 0, 1)])
    def test_empty_cluster_policy(self, policy, prior, expected):
        device = "cuda"
        cfg = KMeansConfig(backend="triton", empty_cluster_policy=policy)
        pixels = torch.rand((1000, 4), device=device)
        assignment = torch.zeros((1000,), device=device, dtype=torch.int32)
        centroids = torch.full((3, 4), 0.5, device=device)
        convergence = torch.zeros((4,), device=device, dtype=torch.int32)
        convergence[1] = prior
        ws = LookbackWorkspace.allocate(device, 1000)
        before = centroids[1].clone()

        update_centroid(
            pixels=pixels, assignment=assignment, centroids=centroids,
            convergence=convergence, cluster=1, ws=ws, cfg=cfg,
        )

        assert int(convergence[1]) == expected
        assert torch.equal(centroids[1], before)


class TestTritonRounds:

    def test_converged_round_then_early_exit(self):
        device = "cuda"
        cfg = KMeansConfig(backend="triton")
        pixels = torch.zeros((3000, 4), device=device)
        for k in range(3):
            pixels[k * 1000:(k + 1) * 1000, k] = 1.0
        pixels[:, 3] = 1.0
        assignment = (torch.arange(3000, device=device) // 1000).to(torch.int32)
        centroids = torch.full((3, 4), 0.5, device=device)
        state = ConvergenceState.allocate(device, 3)
        ws = LookbackWorkspace.allocate(device, 3000)

        assert not run_update_round(pixels=pixels, assignment=assignment, centroids=centroids, state=state, ws=ws, cfg=cfg)
        assert state.converged_count() == 0
        assert run_update_round(pixels=pixels, assignment=assignment, centroids=centroids, state=state, ws=ws, cfg=cfg)

        c_before, v_before = centroids.clone(), state.flags.clone()
        flags_before, slots_before = ws.flags.clone(), ws.slots.clone()
        shuffled = torch.flip(assignment, dims=[0]).contiguous()

        run_update_round(pixels=pixels, assignment=shuffled, centroids=centroids, state=state, ws=ws, cfg=cfg)

        assert torch.equal(centroids, c_before)
        assert torch.equal(state.flags, v_before)
        assert torch.equal(ws.flags, flags_before)
        assert torch.equal(ws.slots, slots_before)
        assert int(ws.ticket[0]) == 0

    def test_cpu_model_agrees_with_kernel(self):
        pixels, assignment, centroids = _random_problem(97, 131, 4, seed=11)
        cpu_cfg = KMeansConfig(backend="cpu", workgroup_size=64, n_seq=4, schedule="random", seed=5)
        gpu_cfg = KMeansConfig(backend="triton", workgroup_size=64, n_seq=4)

        c_cpu = centroids.clone()
        s_cpu = ConvergenceState.allocate("cpu", 4)
        ws_cpu = LookbackWorkspace.allocate("cpu", 97 * 131, block=64, n_seq=4)
        run_update_round(pixels=pixels, assignment=assignment, centroids=c_cpu, state=s_cpu, ws=ws_cpu, cfg=cpu_cfg)

        c_gpu = centroids.cuda()
        s_gpu = ConvergenceState.allocate("cuda", 4)
        ws_gpu = LookbackWorkspace.allocate("cuda", 97 * 131, block=64, n_seq=4)
        run_update_round(
            pixels=pixels.cuda(), assignment=assignment.cuda(), centroids=c_gpu, state=s_gpu, ws=ws_gpu, cfg=gpu_cfg,
        )

        torch.testing.assert_close(c_gpu.cpu(), c_cpu, rtol=1e-4, atol=1e-5)
        assert torch.equal(s_gpu.flags.cpu(), s_cpu.flags)
