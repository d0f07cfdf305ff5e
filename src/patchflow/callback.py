"""Callback system for monitoring patch enhancement.

Callbacks receive events from image loading, from every patch sent to the
upscaling collaborator, and from visibility toggles. All hooks are optional.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from patchflow.core import Patch
from patchflow.tiling import GridSpec


@dataclass
class ProcessingStats:
    """Statistics of one enhancement run."""

    start_time: float | None = None
    end_time: float | None = None
    total_patches: int = 0
    processed_patches: int = 0
    failed_index: int | None = None
    discarded: bool = False
    patch_size: tuple[int, int] | None = None
    scaling_factor: int | None = None
    generation: int | None = None
    resolve_times: list[float] = field(default_factory=list)

    @property
    def elapsed_time(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    @property
    def patches_per_second(self) -> float:
        elapsed = self.elapsed_time
        return self.processed_patches / elapsed if elapsed > 0 else 0.0

    @property
    def completed(self) -> bool:
        return self.processed_patches == self.total_patches


class EnhancerCallback:
    """Base class for enhancement callbacks. Override the hooks you need."""

    def on_load(self, grid: GridSpec, generation: int) -> None:
        pass

    def on_processing_start(self, stats: ProcessingStats) -> None:
        pass

    def on_processing_end(self, stats: ProcessingStats) -> None:
        pass

    def on_processing_error(self, error: Exception, stats: ProcessingStats) -> None:
        pass

    def on_patch_start(self, patch: Patch, patch_index: int, total_patches: int) -> None:
        pass

    def on_patch_end(self, patch: Patch, patch_index: int, total_patches: int) -> None:
        pass

    def on_patch_discarded(self, patch_index: int, generation: int) -> None:
        pass

    def on_visibility_toggled(self, opacity: float) -> None:
        pass


class CompositeCallback(EnhancerCallback):
    """Forwards every event to a list of callbacks.

    A callback that raises is reported and skipped; the others still run.
    """

    def __init__(self, callbacks: list[EnhancerCallback]) -> None:
        self.callbacks = list(callbacks)

    def _dispatch(self, method: str, *args: Any) -> None:
        for callback in self.callbacks:
            try:
                getattr(callback, method)(*args)
            except Exception as e:
                print(f"Callback {type(callback).__name__}.{method} failed: {e}")

    def on_load(self, grid, generation):
        self._dispatch("on_load", grid, generation)

    def on_processing_start(self, stats):
        self._dispatch("on_processing_start", stats)

    def on_processing_end(self, stats):
        self._dispatch("on_processing_end", stats)

    def on_processing_error(self, error, stats):
        self._dispatch("on_processing_error", error, stats)

    def on_patch_start(self, patch, patch_index, total_patches):
        self._dispatch("on_patch_start", patch, patch_index, total_patches)

    def on_patch_end(self, patch, patch_index, total_patches):
        self._dispatch("on_patch_end", patch, patch_index, total_patches)

    def on_patch_discarded(self, patch_index, generation):
        self._dispatch("on_patch_discarded", patch_index, generation)

    def on_visibility_toggled(self, opacity):
        self._dispatch("on_visibility_toggled", opacity)


class ProgressCallback(EnhancerCallback):
    """Prints progress to stdout.

    Parameters
    ----------
    verbose : bool, default=True
        Print anything at all
    show_rate : bool, default=True
        Append the running patches/sec rate to per-patch lines
    """

    def __init__(self, verbose: bool = True, show_rate: bool = True) -> None:
        self.verbose = verbose
        self.show_rate = show_rate
        self._start_time: float | None = None
        self._enhanced = 0

    def on_load(self, grid, generation):
        if self.verbose:
            rows, cols = grid.grid_shape
            print(f"new image loaded: {rows}x{cols} patches (generation {generation})")

    def on_processing_start(self, stats):
        self._start_time = time.perf_counter()
        self._enhanced = 0
        if self.verbose:
            print(f"Starting enhancement: {stats.total_patches} patches")

    def on_patch_end(self, patch, patch_index, total_patches):
        self._enhanced += 1
        if not self.verbose:
            return
        line = f"Patch {patch_index + 1}/{total_patches} enhanced"
        if self.show_rate and self._start_time is not None:
            elapsed = time.perf_counter() - self._start_time
            if elapsed > 0:
                line += f" ({self._enhanced / elapsed:.2f} patches/sec)"
        print(line)

    def on_patch_discarded(self, patch_index, generation):
        if self.verbose:
            print(f"Patch {patch_index + 1} discarded: image was replaced (generation {generation})")

    def on_processing_end(self, stats):
        if self.verbose:
            print(f"enhance completed in {stats.elapsed_time * 1000:.1f} milliseconds.")

    def on_processing_error(self, error, stats):
        if self.verbose:
            print(
                f"enhance failed after {stats.processed_patches}/{stats.total_patches} patches: "
                f"{error}"
            )

    def on_visibility_toggled(self, opacity):
        if self.verbose:
            print("enhanced layer on" if opacity > 0 else "enhanced layer off")


class MetricsCallback(EnhancerCallback):
    """Collects per-patch timings of the collaborator."""

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose
        self.stats = ProcessingStats()
        self._patch_times: list[float] = []
        self._patch_start: float | None = None

    def on_processing_start(self, stats):
        self.stats = stats
        self._patch_times = []

    def on_patch_start(self, patch, patch_index, total_patches):
        self._patch_start = time.perf_counter()

    def on_patch_end(self, patch, patch_index, total_patches):
        if self._patch_start is not None:
            self._patch_times.append(time.perf_counter() - self._patch_start)
            self._patch_start = None

    def on_processing_end(self, stats):
        self.stats = stats
        if self.verbose:
            metrics = self.get_detailed_metrics()
            print(f"Enhancement metrics: {metrics['patches_processed']} patches")
            print(f"   Average resolve time: {metrics['average_patch_time_s'] * 1000:.1f} ms")
            print(f"   Throughput: {metrics['patches_per_second']:.2f} patches/sec")

    def get_detailed_metrics(self) -> dict[str, Any]:
        times = self._patch_times
        return {
            "total_time_s": self.stats.elapsed_time,
            "patches_processed": self.stats.processed_patches,
            "patches_per_second": self.stats.patches_per_second,
            "average_patch_time_s": sum(times) / len(times) if times else 0.0,
            "max_patch_time_s": max(times) if times else 0.0,
        }
