"""Grid partitioning of an image into model-sized patches.

Each axis is split independently. When the axis length is not a multiple of
the maximum patch size, one extra patch is added and the length is spread
evenly over all patches; the few pixels left over by the integer division
are cropped from the trailing edge of the axis.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from patchflow.core import BBox, PatchSpec
from patchflow.errors import PartitionPrecondition


@dataclass(frozen=True)
class AxisPartition:
    """Decomposition of one image axis into equally sized steps."""

    step_size: int
    step_count: int
    trimmed_pixels: int

    @property
    def tiled_length(self) -> int:
        return self.step_size * self.step_count


def compute_axis_partition(length: int, max_patch: int) -> AxisPartition:
    """Split ``length`` pixels into steps no larger than ``max_patch``.

    Parameters
    ----------
    length : int
        Axis length in pixels
    max_patch : int
        Largest patch extent the model accepts

    Returns
    -------
    AxisPartition
        ``step_size * step_count <= length`` and
        ``trimmed_pixels = length - step_size * step_count < step_count``
    """
    if length <= 0:
        raise PartitionPrecondition(f"length must be positive, got {length}")
    if max_patch <= 0:
        raise PartitionPrecondition(f"max_patch must be positive, got {max_patch}")

    step_count = length // max_patch
    if step_count == 0:
        # Axis shorter than one patch
        return AxisPartition(step_size=length, step_count=1, trimmed_pixels=0)
    if length % max_patch == 0:
        return AxisPartition(step_size=max_patch, step_count=step_count, trimmed_pixels=0)

    step_count += 1
    step_size = length // step_count
    return AxisPartition(
        step_size=step_size,
        step_count=step_count,
        trimmed_pixels=length - step_size * step_count,
    )


@dataclass(frozen=True)
class GridSpec:
    """Patch grid over an image of ``width`` x ``height`` pixels."""

    width: int
    height: int
    x: AxisPartition
    y: AxisPartition

    @property
    def grid_shape(self) -> tuple[int, int]:
        """Number of patch rows and columns."""
        return (self.y.step_count, self.x.step_count)

    @property
    def patch_shape(self) -> tuple[int, int]:
        return (self.y.step_size, self.x.step_size)

    @property
    def tiled_size(self) -> tuple[int, int]:
        """(width, height) of the region actually covered by patches."""
        return (self.x.tiled_length, self.y.tiled_length)

    @property
    def trimmed(self) -> tuple[int, int]:
        """Pixels cropped from the right and bottom edges."""
        return (self.x.trimmed_pixels, self.y.trimmed_pixels)

    def scaled_size(self, scaling_factor: int) -> tuple[int, int]:
        """(width, height) of the covered region after upscaling."""
        width, height = self.tiled_size
        return (width * scaling_factor, height * scaling_factor)

    def __len__(self) -> int:
        return self.x.step_count * self.y.step_count

    def build_grid(self) -> Iterator[PatchSpec]:
        """Yield patch specs in row-major order."""
        for grid_y in range(self.y.step_count):
            for grid_x in range(self.x.step_count):
                yield PatchSpec(
                    grid_x=grid_x,
                    grid_y=grid_y,
                    bbox=BBox.from_size(
                        y=grid_y * self.y.step_size,
                        x=grid_x * self.x.step_size,
                        h=self.y.step_size,
                        w=self.x.step_size,
                    ),
                )


def compute_grid(width: int, height: int, max_patch: int) -> GridSpec:
    """Partition a ``width`` x ``height`` image with patches of at most ``max_patch``."""
    return GridSpec(
        width=width,
        height=height,
        x=compute_axis_partition(width, max_patch),
        y=compute_axis_partition(height, max_patch),
    )
