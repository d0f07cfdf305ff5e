"""PatchFlow: progressive patch-based image super-resolution."""

__version__ = "0.1.0"

from patchflow.backends import OnnxUpscaler, RemoteUpscaler, UpscalerBackend
from patchflow.callback import (
    CompositeCallback,
    EnhancerCallback,
    MetricsCallback,
    ProcessingStats,
    ProgressCallback,
)
from patchflow.compositor import Surface, SurfaceCompositor
from patchflow.config import EnhancerConfig, RemoteConfig
from patchflow.core import BBox, Patch, PatchSpec, RasterImage
from patchflow.errors import LoadError, PartitionPrecondition, PatchFlowError, ResolveError
from patchflow.model import ImageEnhancer
from patchflow.pipeline import EnhancementPipeline
from patchflow.store import PatchStore
from patchflow.tiling import AxisPartition, GridSpec, compute_axis_partition, compute_grid
from patchflow.utils import estimate_memory_usage, load_image

__all__ = [
    "AxisPartition",
    "BBox",
    "CompositeCallback",
    "EnhancementPipeline",
    "EnhancerCallback",
    "EnhancerConfig",
    "GridSpec",
    "ImageEnhancer",
    "LoadError",
    "MetricsCallback",
    "OnnxUpscaler",
    "PartitionPrecondition",
    "Patch",
    "PatchFlowError",
    "PatchSpec",
    "PatchStore",
    "ProcessingStats",
    "ProgressCallback",
    "RasterImage",
    "RemoteConfig",
    "RemoteUpscaler",
    "ResolveError",
    "Surface",
    "SurfaceCompositor",
    "UpscalerBackend",
    "compute_axis_partition",
    "compute_grid",
    "estimate_memory_usage",
    "load_image",
]
