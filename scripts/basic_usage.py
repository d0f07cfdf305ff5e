#!/usr/bin/env python3
"""Basic usage example for PatchFlow.

This script demonstrates:
- Loading an image and cutting it into model-sized patches
- Progressive enhancement with progress and metrics callbacks
- Toggling the enhanced layer on and off

Run without arguments to use the built-in OpenCV upscaler, or pass an
ONNX model file or the base URL of an upscaling service:

    python scripts/basic_usage.py model.onnx
    python scripts/basic_usage.py http://localhost:8000
"""

import asyncio
import sys

from patchflow import (
    EnhancerConfig,
    ImageEnhancer,
    MetricsCallback,
    OnnxUpscaler,
    ProgressCallback,
    RemoteUpscaler,
    estimate_memory_usage,
)
from patchflow.examples import NearestUpscaler, generate_test_image


async def open_upscaler(source, scaling_factor):
    """Pick a collaborator from the command line argument."""
    if source is None:
        return await NearestUpscaler.open("nearest", scaling_factor=scaling_factor, delay=0.01)
    if source.startswith(("http://", "https://")):
        return await RemoteUpscaler.open(source, scaling_factor=scaling_factor)
    return await OnnxUpscaler.open(source, scaling_factor=scaling_factor)


async def run(source=None):
    config = EnhancerConfig(patch_size=128, scaling_factor=4)
    image = generate_test_image((260, 260), mode="gradient")

    memory = estimate_memory_usage(image.shape[:2], config.patch_size, config.scaling_factor)
    print(f"Grid: {memory['grid_shape']}, trimmed {memory['trimmed']}")
    print(f"Estimated peak memory: {memory['peak_memory_mb']:.1f} MB")
    print()

    metrics = MetricsCallback(verbose=True)
    enhancer = ImageEnhancer(config=config, callbacks=[ProgressCallback()], name="BasicUsage")
    enhancer.load(image)
    enhancer.summary()

    async with await open_upscaler(source, config.scaling_factor) as upscaler:
        await enhancer.enhance(upscaler, callbacks=[metrics])

    print()
    enhancer.toggle_enhanced_visibility()
    enhancer.toggle_enhanced_visibility()
    enhancer.summary()
    enhancer.close()


def main():
    """Demonstrate basic PatchFlow usage."""
    print("PatchFlow Basic Usage Example")
    print("=" * 40)
    source = sys.argv[1] if len(sys.argv) > 1 else None
    asyncio.run(run(source))


if __name__ == "__main__":
    main()
