"""Compositing of original and enhanced patch layers onto a display surface."""

import cv2
import numpy as np

from patchflow.core import RGBA_CHANNELS, Patch, new_image
from patchflow.store import PatchStore
from patchflow.tiling import GridSpec


class Surface:
    """RGBA backing buffer plus the size it is displayed at.

    The backing buffer holds the upscaled content while ``display_size``
    keeps the unscaled dimensions, so the surface is shown at the size of
    the source image.
    """

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self._pixels = new_image((0, 0, RGBA_CHANNELS))
        self.display_size: tuple[int, int] = (width, height)
        self.resize(width, height)

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    def resize(self, width: int, height: int) -> None:
        """Reallocate the backing buffer. The contents are cleared."""
        if width < 0 or height < 0:
            raise ValueError(f"Surface size must be non-negative, got {(width, height)}")
        self._pixels = new_image((height, width, RGBA_CHANNELS))

    def clear(self) -> None:
        self._pixels.fill(0)

    def blit(self, pixels: np.ndarray, x: int, y: int, opacity: float = 1.0) -> None:
        """Draw RGBA ``pixels`` with their top-left corner at (x, y), source-over.

        Anything falling outside the surface is clipped.
        """
        if opacity <= 0.0:
            return
        # Destination in surface
        dst_x0, dst_y0 = max(x, 0), max(y, 0)
        dst_x1 = min(x + pixels.shape[1], self.width)
        dst_y1 = min(y + pixels.shape[0], self.height)
        if dst_x1 <= dst_x0 or dst_y1 <= dst_y0:
            return
        # Source in pixels
        src_x0, src_y0 = dst_x0 - x, dst_y0 - y
        src = pixels[src_y0 : src_y0 + (dst_y1 - dst_y0), src_x0 : src_x0 + (dst_x1 - dst_x0)]
        target_view = self._pixels[dst_y0:dst_y1, dst_x0:dst_x1]

        if opacity >= 1.0 and np.all(src[..., 3] == 255):
            np.copyto(target_view, src)
            return

        src_f = src.astype(np.float32) / 255.0
        dst_f = target_view.astype(np.float32) / 255.0
        src_a = src_f[..., 3:] * opacity
        dst_a = dst_f[..., 3:]
        out_a = src_a + dst_a * (1.0 - src_a)
        out_rgb = src_f[..., :3] * src_a + dst_f[..., :3] * dst_a * (1.0 - src_a)
        out_rgb = np.divide(out_rgb, out_a, out=np.zeros_like(out_rgb), where=out_a > 0)
        blended = np.concatenate([out_rgb, out_a], axis=-1)
        target_view[:] = np.clip(np.rint(blended * 255.0), 0, 255).astype(np.uint8)


class SurfaceCompositor:
    """Draws the patches of a PatchStore onto a Surface.

    Each patch is drawn as its original layer, upscaled without
    interpolation, optionally covered by its enhanced layer at the current
    opacity. The enhanced layer can be hidden and shown again; opacity
    swaps between 0 and the last visible value.

    Parameters
    ----------
    surface : Surface
        Surface to draw on, owned by the caller
    store : PatchStore
        Source of the patches to draw
    scaling_factor : int
        Upscaling factor of the collaborator
    opacity : float, default=1.0
        Initial opacity of the enhanced layer
    """

    def __init__(
        self, surface: Surface, store: PatchStore, scaling_factor: int, opacity: float = 1.0
    ) -> None:
        if scaling_factor <= 0:
            raise ValueError(f"scaling_factor must be positive, got {scaling_factor}")
        if not 0.0 < opacity <= 1.0:
            raise ValueError(f"opacity must be in (0, 1], got {opacity}")
        self.surface = surface
        self.store = store
        self.scaling_factor = scaling_factor
        self._opacity = opacity
        self._visible_opacity = opacity

    @property
    def opacity(self) -> float:
        return self._opacity

    @property
    def enhanced_visible(self) -> bool:
        return self._opacity != 0.0

    def resize_for(self, grid: GridSpec) -> None:
        """Size the surface for ``grid`` and redraw everything."""
        width, height = grid.scaled_size(self.scaling_factor)
        self.surface.resize(width, height)
        self.surface.display_size = grid.tiled_size
        self.redraw_all()

    def draw_original_patch(self, patch: Patch) -> None:
        factor = self.scaling_factor
        scaled = cv2.resize(
            patch.original.data,
            (patch.width * factor, patch.height * factor),
            interpolation=cv2.INTER_NEAREST,
        )
        self.surface.blit(scaled, patch.top_left_x * factor, patch.top_left_y * factor)

    def draw_enhanced_patch(self, patch: Patch) -> None:
        if patch.enhanced is None:
            raise RuntimeError(f"Patch at {patch.spec.top_left} has no enhanced layer to draw")
        self.surface.blit(
            patch.enhanced.data,
            patch.top_left_x * self.scaling_factor,
            patch.top_left_y * self.scaling_factor,
            opacity=self._opacity,
        )

    def draw_patch(self, patch: Patch) -> None:
        self.draw_original_patch(patch)
        if patch.enhanced is not None:
            self.draw_enhanced_patch(patch)

    def redraw_all(self) -> None:
        """Clear the surface and draw every patch, originals first."""
        self.surface.clear()
        for patch in self.store:
            self.draw_patch(patch)

    def toggle_visibility(self) -> float:
        """Hide or show the enhanced layer. Returns the new opacity."""
        if self._opacity != 0.0:
            self._visible_opacity = self._opacity
            self._opacity = 0.0
        else:
            self._opacity = self._visible_opacity
        self.redraw_all()
        return self._opacity
