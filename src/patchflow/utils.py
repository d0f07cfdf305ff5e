"""
Utility functions: validation, image decoding, memory estimates, grid preview.
"""

import warnings
from pathlib import Path
from typing import Any

import cv2
import numpy as np
import tifffile
from skimage.exposure import rescale_intensity

from patchflow.core import RGBA_CHANNELS, RasterImage
from patchflow.errors import LoadError
from patchflow.tiling import GridSpec, compute_grid

MIN_EFFICIENT_PATCH = 32
TIFF_SUFFIXES = (".tif", ".tiff")


def validate_patch_size(patch_size: int) -> int:
    """Check that ``patch_size`` is a positive integer."""
    if isinstance(patch_size, bool) or not isinstance(patch_size, int):
        raise TypeError(f"patch_size must be an integer, got {type(patch_size).__name__}")
    if patch_size <= 0:
        raise ValueError(f"patch_size must be positive, got {patch_size}")
    if patch_size < MIN_EFFICIENT_PATCH:
        warnings.warn(
            f"patch_size {patch_size} is very small and may impact performance",
            stacklevel=2,
        )
    return patch_size


def _to_uint8(array: np.ndarray) -> np.ndarray:
    if array.dtype == np.uint8:
        return array
    if array.dtype == np.bool_:
        return array.astype(np.uint8) * 255
    if np.issubdtype(array.dtype, np.integer):
        scaled = rescale_intensity(array, in_range="dtype", out_range=(0, 255))
    elif np.issubdtype(array.dtype, np.floating):
        in_range = (0.0, 1.0) if array.size and np.nanmax(array) <= 1.0 else "image"
        scaled = rescale_intensity(np.nan_to_num(array), in_range=in_range, out_range=(0, 255))
    else:
        raise TypeError(f"Unsupported image dtype {array.dtype}")
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def to_rgba(array: np.ndarray) -> np.ndarray:
    """Convert a gray, RGB or RGBA array of any dtype to (H, W, 4) uint8."""
    if not isinstance(array, np.ndarray):
        raise TypeError(f"Expected np.ndarray, got {type(array).__name__}")
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[..., 0]
    if array.ndim == 2:
        height, width = array.shape
        channels = 1
    elif array.ndim == 3 and array.shape[2] in (3, RGBA_CHANNELS):
        height, width, channels = array.shape
    else:
        raise ValueError(f"Image must be (H, W), (H, W, 3) or (H, W, 4), got {array.shape}")
    if height == 0 or width == 0:
        raise ValueError(f"Image must not be empty, got shape {array.shape}")

    pixels = _to_uint8(array)
    rgba = np.empty((height, width, RGBA_CHANNELS), dtype=np.uint8)
    if channels == 1:
        rgba[..., :3] = pixels[..., np.newaxis]
        rgba[..., 3] = 255
    elif channels == 3:
        rgba[..., :3] = pixels
        rgba[..., 3] = 255
    else:
        rgba[:] = pixels
    return rgba


def load_image(path: str | Path) -> RasterImage:
    """Decode an image file into an RGBA RasterImage.

    TIFF files are read with tifffile, everything else with OpenCV.
    """
    path = Path(path)
    if not path.is_file():
        raise LoadError(f"Image file not found: {path}")

    if path.suffix.lower() in TIFF_SUFFIXES:
        try:
            array = tifffile.imread(path)
        except Exception as e:
            raise LoadError(f"Could not decode TIFF {path}: {e}") from e
        # CHW -> HWC
        if array.ndim == 3 and array.shape[0] in (3, 4) and array.shape[2] not in (3, 4):
            array = np.moveaxis(array, 0, -1)
    else:
        array = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if array is None:
            raise LoadError(f"Could not decode image {path}")
        if array.ndim == 3 and array.shape[2] == 3:
            array = cv2.cvtColor(array, cv2.COLOR_BGR2RGB)
        elif array.ndim == 3 and array.shape[2] == 4:
            array = cv2.cvtColor(array, cv2.COLOR_BGRA2RGBA)

    try:
        return RasterImage(to_rgba(array))
    except (TypeError, ValueError) as e:
        raise LoadError(f"Unsupported image layout in {path}: {e}") from e


def estimate_memory_usage(
    image_shape: tuple[int, int], patch_size: int, scaling_factor: int = 4
) -> dict[str, Any]:
    """Estimate memory held by an enhancer for an image of ``image_shape`` (H, W).

    Returns
    -------
    dict
        Sizes in MB of the source image, the original patches, the enhanced
        patches and the display surface, plus the patch count.
    """
    height, width = image_shape
    grid = compute_grid(width, height, patch_size)
    tiled_w, tiled_h = grid.tiled_size
    mb = 1024 * 1024

    source = height * width * RGBA_CHANNELS
    originals = tiled_w * tiled_h * RGBA_CHANNELS
    upscaled = originals * scaling_factor * scaling_factor

    return {
        "original_image_mb": source / mb,
        "patches_mb": originals / mb,
        "enhanced_patches_mb": upscaled / mb,
        "surface_mb": upscaled / mb,
        "peak_memory_mb": (source + originals + 2 * upscaled) / mb,
        "total_patches": len(grid),
        "grid_shape": grid.grid_shape,
        "trimmed": grid.trimmed,
    }


def preview_grid(image: np.ndarray, grid: GridSpec, show: bool = True):
    """
    Display the patch grid over the image. Trimmed pixels are shaded red.
    """
    import matplotlib.pyplot as plt
    from matplotlib.patches import Rectangle

    fig, ax = plt.subplots()
    ax.imshow(image)
    ax.axis("off")
    ax.set_aspect("equal")

    for spec in grid.build_grid():
        x0, y0, x1, y1 = spec.bbox
        ax.add_patch(
            Rectangle(
                (x0, y0),
                x1 - x0,
                y1 - y0,
                fill=False,
                edgecolor="green",
                linewidth=0.8,
            )
        )

    tiled_w, tiled_h = grid.tiled_size
    trim_x, trim_y = grid.trimmed
    if trim_x:
        ax.add_patch(Rectangle((tiled_w, 0), trim_x, grid.height, color="red", alpha=0.4))
    if trim_y:
        ax.add_patch(Rectangle((0, tiled_h), grid.width, trim_y, color="red", alpha=0.4))

    if show:
        plt.show()
    return fig
