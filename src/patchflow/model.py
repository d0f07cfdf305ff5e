"""Patch-based image enhancement engine.

This module implements PatchFlow's consumer-facing entry point:
- ImageEnhancer: load an image, enhance it patch by patch, toggle the
  enhanced layer
- Patch extraction: cut the trimmed source into equally sized patches
- Generation tracking: results computed for a replaced image are dropped
"""

from contextlib import ExitStack
from pathlib import Path

import numpy as np

from patchflow.backends import UpscalerBackend
from patchflow.callback import CompositeCallback, EnhancerCallback, ProcessingStats
from patchflow.compositor import Surface, SurfaceCompositor
from patchflow.config import EnhancerConfig
from patchflow.core import Patch, RasterImage
from patchflow.errors import LoadError
from patchflow.pipeline import EnhancementPipeline
from patchflow.store import PatchStore
from patchflow.tiling import GridSpec, compute_grid
from patchflow.utils import load_image, to_rgba, validate_patch_size


class ImageEnhancer:
    """Progressive patch-based image enhancer.

    Splits an image into a grid of model-sized patches, draws them onto a
    display surface and replaces them one by one with the upscaled output of
    a collaborator. The caller keeps the instance as the handle for toggling
    the enhanced layer.

    Examples
    --------
    >>> enhancer = ImageEnhancer(Surface())
    >>> enhancer.load(image)
    >>> async with await RemoteUpscaler.open("http://localhost:8000") as upscaler:
    ...     await enhancer.enhance(upscaler)
    >>> enhancer.toggle_enhanced_visibility()
    """

    def __init__(
        self,
        surface: Surface | None = None,
        config: EnhancerConfig | None = None,
        callbacks: list[EnhancerCallback] | None = None,
        name: str = "ImageEnhancer",
    ) -> None:
        """Initialize the enhancer.

        Parameters
        ----------
        surface : Surface, optional
            Display surface to draw on. A new one is created if omitted.
        config : EnhancerConfig, optional
            Patch size, scaling factor and enhanced layer opacity
        callbacks : list[EnhancerCallback], optional
            Listeners for load, enhancement and toggle events
        name : str, default="ImageEnhancer"
            Name of the enhancer for logging/debugging
        """
        self.config = config or EnhancerConfig()
        self.patch_size = validate_patch_size(self.config.patch_size)
        self.scaling_factor = self.config.scaling_factor
        self.surface = surface if surface is not None else Surface()
        self.store = PatchStore()
        self.compositor = SurfaceCompositor(
            self.surface,
            self.store,
            scaling_factor=self.scaling_factor,
            opacity=self.config.enhanced_opacity,
        )
        self.callbacks = list(callbacks or [])
        self.callback = CompositeCallback(self.callbacks)
        self.name = name
        self.grid: GridSpec | None = None
        self.generation = 0
        self._running = False

    @property
    def opacity(self) -> float:
        return self.compositor.opacity

    @property
    def patches(self) -> tuple[Patch, ...]:
        return self.store.patches()

    def _as_rgba(self, image: RasterImage | np.ndarray | str | Path) -> np.ndarray:
        """Source pixels as an (H, W, 4) uint8 array."""
        if isinstance(image, RasterImage):
            if image.closed:
                raise LoadError(f"Cannot load {image!r}")
            return image.data
        if isinstance(image, (str, Path)):
            decoded = load_image(image)
            pixels = decoded.data
            decoded.close()
            return pixels
        if isinstance(image, np.ndarray):
            try:
                return to_rgba(image)
            except (TypeError, ValueError) as e:
                raise LoadError(f"Unsupported image: {e}") from e
        raise TypeError(
            f"image must be a RasterImage, np.ndarray or path, got {type(image).__name__}"
        )

    @staticmethod
    def _cut_patches(source: np.ndarray, grid: GridSpec) -> list[Patch]:
        """Cut every patch of ``grid``; nothing stays allocated on failure."""
        patches: list[Patch] = []
        with ExitStack() as stack:
            for spec in grid.build_grid():
                original = RasterImage.from_region(source, spec.bbox)
                stack.callback(original.close)
                patches.append(Patch(spec=spec, original=original))
            stack.pop_all()
        return patches

    def load(self, image: RasterImage | np.ndarray | str | Path) -> GridSpec:
        """Replace the current image with ``image`` and draw its patches.

        The new image is decoded and cut before the previous generation is
        released, so a failed load leaves the enhancer untouched.

        Parameters
        ----------
        image : RasterImage | np.ndarray | str | Path
            Bitmap, array (gray, RGB or RGBA) or path to an image file

        Returns
        -------
        GridSpec
            Patch grid of the new image
        """
        source = self._as_rgba(image)
        height, width = source.shape[:2]
        grid = compute_grid(width, height, self.patch_size)
        patches = self._cut_patches(source, grid)

        self.generation += 1
        self.grid = grid
        self.store.replace(patches)
        self.compositor.resize_for(grid)

        self.callback.on_load(grid, self.generation)
        return grid

    async def enhance(
        self, collaborator: UpscalerBackend, callbacks: list[EnhancerCallback] | None = None
    ) -> ProcessingStats:
        """Upscale every patch with ``collaborator``, drawing results as they arrive.

        Parameters
        ----------
        collaborator : UpscalerBackend
            Opened upscaling model or service
        callbacks : list[EnhancerCallback], optional
            Extra listeners for this run only

        Returns
        -------
        ProcessingStats
            Statistics of the run. Raises ResolveError on the first failed patch.
        """
        if self.grid is None:
            raise RuntimeError(
                f"Enhancer '{self.name}' has no image loaded. Call enhancer.load(image) first"
            )
        if self._running:
            raise RuntimeError(
                f"Enhancer '{self.name}' is already enhancing. Await the running enhance() first"
            )
        generation = self.generation
        pipeline = EnhancementPipeline(
            self.store,
            self.compositor,
            generation=generation,
            is_current=lambda: self.generation == generation,
            callbacks=self.callbacks + list(callbacks or []),
        )
        self._running = True
        try:
            return await pipeline.run(collaborator)
        finally:
            self._running = False

    def toggle_enhanced_visibility(self) -> float:
        """Hide or show the enhanced layer and redraw. Returns the new opacity."""
        opacity = self.compositor.toggle_visibility()
        self.callback.on_visibility_toggled(opacity)
        return opacity

    def close(self) -> None:
        """Release every patch. Pending enhancement results will be discarded."""
        self.generation += 1
        self.grid = None
        self.store.clear()
        self.surface.clear()

    def summary(self) -> None:
        """Print enhancer configuration summary."""
        print(f"PatchFlow Enhancer: {self.name}")
        print("=" * 50)
        print(f"Max patch size: {self.patch_size}")
        print(f"Scaling factor: {self.scaling_factor}")
        print(f"Opacity:        {self.opacity}")
        if self.grid is not None:
            rows, cols = self.grid.grid_shape
            print(f"Image size:     {self.grid.width}x{self.grid.height}")
            print(f"Grid:           {rows}x{cols} patches of {self.grid.patch_shape}")
            print(f"Trimmed:        {self.grid.trimmed}")
            print(f"Surface:        {self.surface.width}x{self.surface.height}")
            print(f"Enhanced:       {self.store.enhanced_count}/{len(self.store)}")
        else:
            print("Image:          none loaded")
        print("=" * 50)
