"""Tests for example implementations."""

import asyncio

import numpy as np
import pytest

from patchflow.core import RasterImage
from patchflow.errors import ResolveError
from patchflow.examples import NearestUpscaler, generate_test_image


class TestImageGeneration:
    """Test synthetic image generation."""

    def test_generate_test_image_gradient(self):
        """Test gradient generation."""
        image = generate_test_image(shape=(128, 256), mode="gradient")

        assert image.shape == (128, 256, 4)
        assert image.dtype == np.uint8
        assert image[0, 0, 0] == 0
        assert image[0, -1, 0] == 255
        assert image[-1, 0, 1] == 255
        assert np.all(image[..., 3] == 255)

    def test_generate_test_image_noise(self):
        """Test noise generation."""
        image = generate_test_image(shape=(64, 64), mode="noise", seed=42)

        assert image.shape == (64, 64, 4)
        assert image[..., :3].std() > 50
        assert np.all(image[..., 3] == 255)

    def test_generate_test_image_invalid_mode(self):
        """Test invalid mode rejection."""
        with pytest.raises(ValueError, match="Unknown mode"):
            generate_test_image(mode="invalid")

    def test_reproducibility(self):
        """Test seed reproducibility."""
        img1 = generate_test_image(shape=(64, 64), mode="noise", seed=123)
        img2 = generate_test_image(shape=(64, 64), mode="noise", seed=123)
        img3 = generate_test_image(shape=(64, 64), mode="noise", seed=124)

        assert np.array_equal(img1, img2)
        assert not np.array_equal(img1, img3)

    def test_single_pixel(self):
        """Test degenerate sizes."""
        assert generate_test_image(shape=(1, 1)).shape == (1, 1, 4)


class TestNearestUpscaler:
    """Test the OpenCV collaborator."""

    def test_resolve(self):
        """Test pixels are replicated into factor x factor blocks."""
        image = RasterImage(generate_test_image((6, 5), mode="noise"))
        upscaler = NearestUpscaler(scaling_factor=3)

        result = asyncio.run(upscaler.resolve(image))

        assert result.shape == (18, 15)
        np.testing.assert_array_equal(
            result.data, np.repeat(np.repeat(image.data, 3, axis=0), 3, axis=1)
        )
        assert upscaler.calls == 1
        assert not image.closed

    @pytest.mark.parametrize("interpolation", ["linear", "cubic", "lanczos"])
    def test_interpolations(self, interpolation):
        """Test smoother interpolations keep the output size."""
        image = RasterImage(generate_test_image((8, 8)))
        result = asyncio.run(NearestUpscaler(2, interpolation=interpolation).resolve(image))
        assert result.shape == (16, 16)

    def test_invalid_interpolation(self):
        """Test unknown interpolation names."""
        with pytest.raises(ValueError, match="Unknown interpolation"):
            NearestUpscaler(interpolation="bogus")

    def test_open(self):
        """Test opening by interpolation name."""
        upscaler = asyncio.run(NearestUpscaler.open("cubic", scaling_factor=2, delay=0.001))
        assert upscaler.interpolation == "cubic"
        assert upscaler.scaling_factor == 2
        assert upscaler.delay == 0.001

    def test_delay(self):
        """Test simulated inference time still yields a result."""
        image = RasterImage(generate_test_image((4, 4)))
        result = asyncio.run(NearestUpscaler(2, delay=0.001).resolve(image))
        assert result.shape == (8, 8)

    def test_closed(self):
        """Test a closed upscaler refuses work."""
        upscaler = NearestUpscaler()
        asyncio.run(upscaler.close())
        with pytest.raises(ResolveError, match="closed"):
            asyncio.run(upscaler.resolve(RasterImage(generate_test_image((4, 4)))))

    def test_resolve_batch(self):
        """Test the sequential batch fallback."""
        upscaler = NearestUpscaler(scaling_factor=2)
        images = [RasterImage(generate_test_image((4, 4), seed=i, mode="noise")) for i in range(3)]
        results = asyncio.run(upscaler.resolve_batch(images))
        assert upscaler.calls == 3
        assert [r.shape for r in results] == [(8, 8)] * 3
