"""Tests for the serial enhancement pipeline."""

import asyncio

import numpy as np
import pytest

from patchflow.backends import UpscalerBackend
from patchflow.callback import EnhancerCallback
from patchflow.compositor import Surface, SurfaceCompositor
from patchflow.core import Patch, RasterImage
from patchflow.errors import ResolveError
from patchflow.examples import NearestUpscaler
from patchflow.pipeline import EnhancementPipeline
from patchflow.store import PatchStore
from patchflow.tiling import compute_grid

FACTOR = 2


class FlakyUpscaler(UpscalerBackend):
    """Paints every patch white, fails on selected calls."""

    def __init__(self, fail_on=(), error=None, scaling_factor=FACTOR):
        super().__init__(scaling_factor)
        self.fail_on = set(fail_on)
        self.error = error or ResolveError("service unavailable")
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    @classmethod
    async def open(cls, source="", **kwargs):
        return cls(**kwargs)

    async def resolve(self, image):
        call = self.calls
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if call in self.fail_on:
                raise self.error
            width, height = self._expected_size(image)
            return RasterImage(np.full((height, width, 4), 255, dtype=np.uint8))
        finally:
            self.in_flight -= 1

    async def close(self):
        self._closed = True


class WrongSizeUpscaler(FlakyUpscaler):
    async def resolve(self, image):
        self.calls += 1
        self.result = RasterImage(np.zeros((image.height, image.width, 4), dtype=np.uint8))
        return self.result


class RecordingCallback(EnhancerCallback):
    def __init__(self):
        self.events = []

    def on_processing_start(self, stats):
        self.events.append(("start", stats.total_patches))

    def on_patch_start(self, patch, patch_index, total_patches):
        self.events.append(("patch_start", patch_index))

    def on_patch_end(self, patch, patch_index, total_patches):
        self.events.append(("patch_end", patch_index))

    def on_patch_discarded(self, patch_index, generation):
        self.events.append(("discarded", patch_index))

    def on_processing_end(self, stats):
        self.events.append(("end", stats.processed_patches))

    def on_processing_error(self, error, stats):
        self.events.append(("error", stats.failed_index))


def setup_pipeline(width=12, height=4, patch_size=4, **kwargs):
    """Pipeline over a gray image of ``width`` x ``height``."""
    source = np.full((height, width, 4), 40, dtype=np.uint8)
    source[..., 3] = 255
    grid = compute_grid(width, height, patch_size)
    store = PatchStore()
    store.replace(
        [Patch(spec=spec, original=RasterImage.from_region(source, spec.bbox)) for spec in grid.build_grid()]
    )
    compositor = SurfaceCompositor(Surface(), store, scaling_factor=FACTOR)
    compositor.resize_for(grid)
    return EnhancementPipeline(store, compositor, **kwargs)


class TestEnhancementPipeline:
    """Test EnhancementPipeline.run."""

    def test_all_patches_enhanced(self):
        """Test every patch gets an enhanced layer drawn on the surface."""
        pipeline = setup_pipeline()
        upscaler = FlakyUpscaler()

        stats = asyncio.run(pipeline.run(upscaler))

        assert stats.completed
        assert stats.processed_patches == 3
        assert len(stats.resolve_times) == 3
        assert stats.patch_size == (4, 4)
        assert all(patch.is_enhanced for patch in pipeline.store)
        assert np.all(pipeline.compositor.surface.pixels == 255)

    def test_one_request_in_flight(self):
        """Test patches are resolved strictly one after another."""
        pipeline = setup_pipeline(width=16, height=16)
        upscaler = FlakyUpscaler()
        asyncio.run(pipeline.run(upscaler))
        assert upscaler.calls == 16
        assert upscaler.max_in_flight == 1

    def test_row_major_callbacks(self):
        """Test progress events follow row-major order."""
        recorder = RecordingCallback()
        pipeline = setup_pipeline(width=8, height=8, callbacks=[recorder])
        asyncio.run(pipeline.run(FlakyUpscaler()))
        assert recorder.events == [
            ("start", 4),
            ("patch_start", 0),
            ("patch_end", 0),
            ("patch_start", 1),
            ("patch_end", 1),
            ("patch_start", 2),
            ("patch_end", 2),
            ("patch_start", 3),
            ("patch_end", 3),
            ("end", 4),
        ]

    def test_partial_failure(self):
        """Test a failure on patch 2 keeps patch 1 and leaves 2 and 3 original."""
        recorder = RecordingCallback()
        pipeline = setup_pipeline(callbacks=[recorder])
        upscaler = FlakyUpscaler(fail_on={1})

        with pytest.raises(ResolveError) as exc_info:
            asyncio.run(pipeline.run(upscaler))

        assert exc_info.value.patch_index == 1
        assert upscaler.calls == 2
        patches = pipeline.store.patches()
        assert patches[0].is_enhanced
        assert not patches[1].is_enhanced
        assert not patches[2].is_enhanced

        pixels = pipeline.compositor.surface.pixels
        assert np.all(pixels[:, 0:8, 0] == 255)
        assert np.all(pixels[:, 8:24, 0] == 40)
        assert recorder.events[-1] == ("error", 1)

    def test_unexpected_error_is_wrapped(self):
        """Test non-ResolveError failures surface as ResolveError."""
        pipeline = setup_pipeline()
        upscaler = FlakyUpscaler(fail_on={0}, error=ConnectionResetError("reset"))

        with pytest.raises(ResolveError, match="reset") as exc_info:
            asyncio.run(pipeline.run(upscaler))

        assert exc_info.value.patch_index == 0
        assert isinstance(exc_info.value.__cause__, ConnectionResetError)

    def test_wrong_output_size(self):
        """Test a result of the wrong size is rejected and released."""
        pipeline = setup_pipeline()
        upscaler = WrongSizeUpscaler()

        with pytest.raises(ResolveError, match="expected 8x8"):
            asyncio.run(pipeline.run(upscaler))

        assert upscaler.result.closed
        assert pipeline.store.enhanced_count == 0

    def test_scaling_factor_mismatch(self):
        """Test a collaborator with another factor is refused up front."""
        pipeline = setup_pipeline()
        upscaler = FlakyUpscaler(scaling_factor=4)
        with pytest.raises(ValueError, match="scales by 4"):
            asyncio.run(pipeline.run(upscaler))
        assert upscaler.calls == 0

    def test_rerun_skips_enhanced_patches(self):
        """Test a second run only resolves patches that are still original."""
        pipeline = setup_pipeline()
        with pytest.raises(ResolveError):
            asyncio.run(pipeline.run(FlakyUpscaler(fail_on={1})))

        retry = FlakyUpscaler()
        stats = asyncio.run(pipeline.run(retry))

        assert retry.calls == 2
        assert stats.processed_patches == 3
        assert pipeline.store.enhanced_count == 3

    def test_stale_result_is_discarded(self):
        """Test a result arriving after the image changed is dropped."""
        current = {"value": True}
        recorder = RecordingCallback()
        pipeline = setup_pipeline(is_current=lambda: current["value"], callbacks=[recorder])

        class ReloadDuringResolve(FlakyUpscaler):
            async def resolve(self, image):
                result = await super().resolve(image)
                if self.calls == 2:
                    current["value"] = False
                self.last = result
                return result

        upscaler = ReloadDuringResolve()
        stats = asyncio.run(pipeline.run(upscaler))

        assert stats.discarded
        assert upscaler.calls == 2
        assert upscaler.last.closed
        assert pipeline.store.enhanced_count == 1
        assert ("discarded", 1) in recorder.events

    def test_result_released_when_patch_taken(self):
        """Test a result that cannot be stored is closed before the error propagates."""
        pipeline = setup_pipeline()
        store = pipeline.store

        class Racing(FlakyUpscaler):
            async def resolve(self, image):
                result = await super().resolve(image)
                if self.calls == 1:
                    width, height = self._expected_size(image)
                    store.set_enhanced(0, RasterImage(np.zeros((height, width, 4), dtype=np.uint8)))
                self.last = result
                return result

        upscaler = Racing()
        with pytest.raises(ValueError, match="already enhanced"):
            asyncio.run(pipeline.run(upscaler))

        assert upscaler.last.closed
        assert not store.patches()[0].enhanced.closed
        assert store.enhanced_count == 1

    def test_empty_store(self):
        """Test running with no patches completes immediately."""
        store = PatchStore()
        compositor = SurfaceCompositor(Surface(), store, scaling_factor=FACTOR)
        stats = asyncio.run(EnhancementPipeline(store, compositor).run(FlakyUpscaler()))
        assert stats.total_patches == 0
        assert stats.completed

    def test_with_nearest_upscaler(self):
        """Test the OpenCV collaborator reproduces the original layer."""
        pipeline = setup_pipeline(width=8, height=8)
        before = pipeline.compositor.surface.pixels.copy()
        upscaler = NearestUpscaler(scaling_factor=FACTOR)

        asyncio.run(pipeline.run(upscaler))

        assert upscaler.calls == 4
        np.testing.assert_array_equal(pipeline.compositor.surface.pixels, before)
