"""Core data structures for patch-based enhancement.

- RasterImage: owned RGBA bitmap with explicit release
- BBox: axis-aligned rectangle in pixel coordinates
- PatchSpec: geometry of one grid cell, known before any pixel is cut
- Patch: a PatchSpec with its original and (eventually) enhanced bitmaps
"""

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

RGBA_CHANNELS = 4


def new_image(shape: tuple[int, ...], dtype: np.dtype = np.uint8) -> np.ndarray:
    """Allocate a zero-filled, C-contiguous image buffer."""
    return np.zeros(shape, dtype=dtype, order="C")


class RasterImage:
    """RGBA bitmap of shape (height, width, 4) and dtype uint8.

    The pixel buffer is owned by the instance until ``close()`` is called.
    Reading pixels from a closed image is an error.

    Parameters
    ----------
    data : np.ndarray
        Pixel data in (H, W, 4) layout
    copy : bool, default=False
        Copy ``data`` instead of taking ownership of it
    """

    def __init__(self, data: np.ndarray, copy: bool = False) -> None:
        if not isinstance(data, np.ndarray):
            raise TypeError(f"Expected np.ndarray, got {type(data).__name__}")
        if data.ndim != 3 or data.shape[2] != RGBA_CHANNELS:
            raise ValueError(f"RasterImage must be (H, W, 4) RGBA, got shape {data.shape}")
        if data.dtype != np.uint8:
            raise ValueError(f"RasterImage must be uint8, got {data.dtype}")
        if data.shape[0] == 0 or data.shape[1] == 0:
            raise ValueError(f"RasterImage must not be empty, got shape {data.shape}")
        self._data: np.ndarray | None = np.array(data, copy=True) if copy else data
        self._height, self._width = data.shape[:2]

    @classmethod
    def from_region(cls, source: np.ndarray, bbox: "BBox") -> "RasterImage":
        """Cut an independent copy of ``bbox`` out of an RGBA array."""
        region = source[bbox.get_slices()]
        if region.shape[:2] != bbox.shape:
            raise ValueError(f"Region {bbox} exceeds source of shape {source.shape[:2]}")
        return cls(np.ascontiguousarray(region).copy())

    @property
    def data(self) -> np.ndarray:
        if self._data is None:
            raise RuntimeError("RasterImage has been closed")
        return self._data

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> tuple[int, int]:
        return (self._height, self._width)

    @property
    def closed(self) -> bool:
        return self._data is None

    def close(self) -> None:
        """Release the pixel buffer. Safe to call more than once."""
        self._data = None

    def __enter__(self) -> "RasterImage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"RasterImage({self._width}x{self._height}, {state})"


class BBox(NamedTuple):
    """Rectangle ``[x0, x1) x [y0, y1)``."""

    x0: int
    y0: int
    x1: int
    y1: int

    @classmethod
    def from_size(cls, y: int, x: int, h: int, w: int) -> "BBox":
        return cls(x, y, x + w, y + h)

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    def get_slices(self) -> tuple[slice, slice]:
        return (slice(self.y0, self.y1), slice(self.x0, self.x1))

    def scale(self, factor: int) -> "BBox":
        return BBox(self.x0 * factor, self.y0 * factor, self.x1 * factor, self.y1 * factor)

    def contains(self, x: int, y: int) -> bool:
        return self.x0 <= x < self.x1 and self.y0 <= y < self.y1

    def intersects(self, other: "BBox") -> bool:
        return not (
            self.x1 <= other.x0 or other.x1 <= self.x0 or self.y1 <= other.y0 or other.y1 <= self.y0
        )


class PatchSpec(NamedTuple):
    """Grid position and source-image rectangle of one patch."""

    grid_x: int
    grid_y: int
    bbox: BBox

    @property
    def top_left(self) -> tuple[int, int]:
        return (self.bbox.x0, self.bbox.y0)


@dataclass
class Patch:
    """One grid cell with the bitmaps it owns."""

    spec: PatchSpec
    original: RasterImage
    enhanced: RasterImage | None = None

    def __post_init__(self) -> None:
        if self.original.shape != self.spec.bbox.shape:
            raise ValueError(
                f"Original bitmap {self.original.shape} does not match patch {self.spec.bbox.shape}"
            )

    @property
    def grid_x(self) -> int:
        return self.spec.grid_x

    @property
    def grid_y(self) -> int:
        return self.spec.grid_y

    @property
    def top_left_x(self) -> int:
        return self.spec.bbox.x0

    @property
    def top_left_y(self) -> int:
        return self.spec.bbox.y0

    @property
    def width(self) -> int:
        return self.spec.bbox.width

    @property
    def height(self) -> int:
        return self.spec.bbox.height

    @property
    def is_enhanced(self) -> bool:
        return self.enhanced is not None

    def bitmaps(self) -> list[RasterImage]:
        """Bitmaps currently owned by this patch."""
        return [self.original] if self.enhanced is None else [self.original, self.enhanced]
