from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import torch


@dataclass
class Image:
    """RGBA8 image held in memory, row-major.

    dimensions: (width, height)
    rgba: uint8 [width * height * 4], as an array or raw bytes
    """
    dimensions: tuple[int, int]
    rgba: np.ndarray | bytes

    def __post_init__(self) -> None:
        width, height = (int(v) for v in self.dimensions)
        self.dimensions = (width, height)
        rgba = self.rgba
        if isinstance(rgba, (bytes, bytearray, memoryview)):
            rgba = np.frombuffer(memoryview(rgba), dtype=np.uint8)
        self.rgba = np.ascontiguousarray(np.asarray(rgba, dtype=np.uint8).reshape(-1))
        if self.rgba.size != width * height * 4:
            raise ValueError(
                f"rgba must hold width*height*4={width * height * 4} bytes, got {self.rgba.size}"
            )

    @property
    def width(self) -> int:
        return self.dimensions[0]

    @property
    def height(self) -> int:
        return self.dimensions[1]

    @property
    def n_pixels(self) -> int:
        return self.width * self.height

    def get_pixel(self, x: int, y: int) -> np.ndarray:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}x{self.height} image")
        index = (x + y * self.width) * 4
        return self.rgba[index:index + 4]

    def raw_pixels(self) -> np.ndarray:
        return self.rgba

    def to_pixel_tensor(self, device: torch.device | str = "cpu") -> torch.Tensor:
        """float32 [H, W, 4] with every channel scaled to [0, 1]."""
        px = torch.from_numpy(self.rgba.reshape(self.height, self.width, 4).copy())
        return (px.to(torch.float32) / 255.0).to(device)

    @staticmethod
    def from_array(arr: np.ndarray) -> "Image":
        """Build from a uint8 [H, W, 3] or [H, W, 4] array (alpha defaults to opaque)."""
        arr = np.asarray(arr, dtype=np.uint8)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"expected [H,W,3] or [H,W,4], got shape={arr.shape}")
        H, W = arr.shape[:2]
        if arr.shape[2] == 3:
            alpha = np.full((H, W, 1), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        return Image(dimensions=(W, H), rgba=arr.reshape(-1))
