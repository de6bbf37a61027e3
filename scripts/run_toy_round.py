from __future__ import annotations

import argparse
import logging
import time

import numpy as np
import torch

from gpukmeans.centroids import ConvergenceState, LookbackWorkspace, run_update_round
from gpukmeans.config import KMeansConfig, load_config
from gpukmeans.image import Image


def nearest_centroid(pixels: torch.Tensor, centroids: torch.Tensor) -> torch.Tensor:
    """Toy stand-in for the assignment pass: index of the closest centroid per pixel (rgb only)."""
    d = torch.cdist(pixels.reshape(-1, 4)[:, :3], centroids[:, :3])
    return torch.argmin(d, dim=1).to(torch.int32)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--device", default="cuda")
    ap.add_argument("--config", default=None)
    ap.add_argument("--width", type=int, default=640)
    ap.add_argument("--height", type=int, default=480)
    ap.add_argument("--k", type=int, default=8)
    ap.add_argument("--iterations", type=int, default=30)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    device = args.device
    if device == "cuda" and not torch.cuda.is_available():
        device = "cpu"

    cfg = load_config(args.config) if args.config else KMeansConfig()

    g = torch.Generator(device="cpu")
    g.manual_seed(42)

    # Smooth synthetic image: horizontal red ramp, vertical green ramp, noisy blue
    H, W = args.height, args.width
    rng = np.random.default_rng(42)
    rgb = np.empty((H, W, 3), dtype=np.uint8)
    rgb[..., 0] = np.linspace(0, 255, W, dtype=np.float32)[None, :].astype(np.uint8)
    rgb[..., 1] = np.linspace(0, 255, H, dtype=np.float32)[:, None].astype(np.uint8)
    rgb[..., 2] = rng.integers(0, 256, size=(H, W), dtype=np.uint8)
    image = Image.from_array(rgb)
    pixels = image.to_pixel_tensor(device)

    picks = torch.randperm(image.n_pixels, generator=g)[: args.k]
    centroids = pixels.reshape(-1, 4)[picks.to(device)].clone().contiguous()

    ws = LookbackWorkspace.allocate(device, image.n_pixels, block=cfg.workgroup_size, n_seq=cfg.n_seq)
    state = ConvergenceState.allocate(device, args.k)

    t0 = time.time()
    for it in range(args.iterations):
        assignment = nearest_centroid(pixels, centroids)
        if run_update_round(pixels=pixels, assignment=assignment, centroids=centroids, state=state, ws=ws, cfg=cfg):
            print(f"Converged after {it + 1} iterations")
            break
    if device == "cuda":
        torch.cuda.synchronize()
    print(f"Elapsed: {(time.time() - t0) * 1e3:.1f} ms on {device} ({ws.n_groups} groups per dispatch)")

    for index, c in enumerate(centroids.cpu().tolist()):
        print(f"Centroid {index} = {c}")


if __name__ == "__main__":
    main()
