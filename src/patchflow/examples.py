"""Example collaborators and synthetic images for demos and tests."""

import asyncio

import cv2
import numpy as np

from patchflow.backends import UpscalerBackend
from patchflow.config import SCALING_FACTOR
from patchflow.core import RasterImage
from patchflow.errors import ResolveError

INTERPOLATIONS = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos": cv2.INTER_LANCZOS4,
}


class NearestUpscaler(UpscalerBackend):
    """In-process collaborator resizing patches with OpenCV.

    Deterministic, needs no model file. ``delay`` simulates inference time.
    """

    def __init__(
        self,
        scaling_factor: int = SCALING_FACTOR,
        interpolation: str = "nearest",
        delay: float = 0.0,
    ) -> None:
        super().__init__(scaling_factor)
        if interpolation not in INTERPOLATIONS:
            raise ValueError(f"Unknown interpolation: {interpolation}")
        self.interpolation = interpolation
        self.delay = delay
        self.calls = 0

    @classmethod
    async def open(cls, source: str = "nearest", **kwargs) -> "NearestUpscaler":
        return cls(interpolation=source, **kwargs)

    async def resolve(self, image: RasterImage) -> RasterImage:
        self._check_open()
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        width, height = self._expected_size(image)
        resized = cv2.resize(
            image.data, (width, height), interpolation=INTERPOLATIONS[self.interpolation]
        )
        if resized.shape != (height, width, 4):
            raise ResolveError(f"Resize produced {resized.shape}")
        return RasterImage(np.ascontiguousarray(resized))

    async def close(self) -> None:
        self._closed = True


def generate_test_image(
    shape: tuple[int, int] = (260, 260), seed: int = 42, mode: str = "gradient"
) -> np.ndarray:
    """Generate a synthetic RGBA uint8 image of ``shape`` (H, W).

    Parameters
    ----------
    shape : tuple[int, int]
        Image height and width
    seed : int
        Random seed for "noise" mode
    mode : str
        "gradient" for smooth color ramps, "noise" for uniform noise

    Returns
    -------
    np.ndarray
        Array of shape (H, W, 4)
    """
    height, width = shape
    image = np.empty((height, width, 4), dtype=np.uint8)
    if mode == "gradient":
        ys, xs = np.mgrid[0:height, 0:width]
        image[..., 0] = (xs * 255 // max(width - 1, 1)).astype(np.uint8)
        image[..., 1] = (ys * 255 // max(height - 1, 1)).astype(np.uint8)
        image[..., 2] = ((xs + ys) % 256).astype(np.uint8)
    elif mode == "noise":
        rng = np.random.default_rng(seed)
        image[..., :3] = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    else:
        raise ValueError(f"Unknown mode: {mode}")
    image[..., 3] = 255
    return image
