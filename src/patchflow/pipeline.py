"""Serial enhancement of patches through an upscaling collaborator."""

import time
from collections.abc import Callable
from contextlib import ExitStack

from patchflow.backends import UpscalerBackend
from patchflow.callback import CompositeCallback, EnhancerCallback, ProcessingStats
from patchflow.compositor import SurfaceCompositor
from patchflow.core import Patch, RasterImage
from patchflow.errors import ResolveError
from patchflow.store import PatchStore


class EnhancementPipeline:
    """Sends patches to a collaborator one at a time and draws each result.

    Patches are processed in row-major order with at most one ``resolve``
    call in flight. Each result is drawn over its own patch only. The first
    failure aborts the run; results already drawn are kept.

    Parameters
    ----------
    store : PatchStore
        Patches of the generation to enhance
    compositor : SurfaceCompositor
        Compositor drawing onto the display surface
    generation : int, default=0
        Generation the run belongs to
    is_current : Callable[[], bool], optional
        Tells whether ``generation`` is still the loaded one. A result that
        arrives after the image was replaced is discarded and the run stops.
    callbacks : list[EnhancerCallback], optional
        Progress listeners
    """

    def __init__(
        self,
        store: PatchStore,
        compositor: SurfaceCompositor,
        generation: int = 0,
        is_current: Callable[[], bool] | None = None,
        callbacks: list[EnhancerCallback] | None = None,
    ) -> None:
        self.store = store
        self.compositor = compositor
        self.generation = generation
        self._is_current = is_current or (lambda: True)
        self.callback = CompositeCallback(callbacks or [])

    async def run(self, collaborator: UpscalerBackend) -> ProcessingStats:
        """Enhance every patch that has no enhanced layer yet."""
        if collaborator.scaling_factor != self.compositor.scaling_factor:
            raise ValueError(
                f"Collaborator scales by {collaborator.scaling_factor}, "
                f"surface expects {self.compositor.scaling_factor}"
            )
        patches = self.store.patches()
        stats = ProcessingStats(
            total_patches=len(patches),
            scaling_factor=collaborator.scaling_factor,
            generation=self.generation,
        )
        if patches:
            stats.patch_size = patches[0].original.shape

        stats.start_time = time.perf_counter()
        try:
            self.callback.on_processing_start(stats)
            for index, patch in enumerate(patches):
                if patch.is_enhanced:
                    stats.processed_patches = index + 1
                    continue

                self.callback.on_patch_start(patch, index, stats.total_patches)
                try:
                    enhanced = await self._resolve(collaborator, patch, index, stats)
                except ResolveError:
                    # The input may have been released by a reload mid-request
                    if self._is_current():
                        raise
                    enhanced = None

                if not self._is_current():
                    if enhanced is not None:
                        enhanced.close()
                    stats.failed_index = None
                    stats.discarded = True
                    self.callback.on_patch_discarded(index, self.generation)
                    break

                with ExitStack() as stack:
                    stack.callback(enhanced.close)
                    self.store.set_enhanced(index, enhanced)
                    stack.pop_all()
                self.compositor.draw_enhanced_patch(patch)
                stats.processed_patches = index + 1
                self.callback.on_patch_end(patch, index, stats.total_patches)

        except Exception as e:
            stats.end_time = time.perf_counter()
            self.callback.on_processing_error(e, stats)
            raise

        stats.end_time = time.perf_counter()
        self.callback.on_processing_end(stats)
        return stats

    async def _resolve(
        self, collaborator: UpscalerBackend, patch: Patch, index: int, stats: ProcessingStats
    ) -> RasterImage:
        t0 = time.perf_counter()
        try:
            result = await collaborator.resolve(patch.original)
        except ResolveError as e:
            stats.failed_index = index
            if e.patch_index is None:
                e.patch_index = index
            raise
        except Exception as e:
            stats.failed_index = index
            raise ResolveError(f"Patch {index} could not be upscaled: {e}", patch_index=index) from e
        stats.resolve_times.append(time.perf_counter() - t0)

        factor = collaborator.scaling_factor
        expected = (patch.height * factor, patch.width * factor)
        if not isinstance(result, RasterImage) or result.shape != expected:
            if isinstance(result, RasterImage):
                result.close()
            stats.failed_index = index
            raise ResolveError(
                f"Patch {index}: collaborator returned {result!r}, expected {expected[1]}x{expected[0]}",
                patch_index=index,
            )
        return result
