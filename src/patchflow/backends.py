"""Upscaling collaborators.

Two implementations share one contract: an on-device ONNX model and a
remote HTTP service. Both upscale one RGBA patch at a time by a fixed
integer factor and never modify their input.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

import aiohttp
import numpy as np
import onnxruntime as rt
from pydantic import ValidationError

from patchflow.codec import from_planar, to_planar
from patchflow.config import REMOTE_TIMEOUT_S, SCALING_FACTOR, UPSCALE_ENDPOINT, RemoteConfig
from patchflow.core import RasterImage
from patchflow.errors import LoadError, ResolveError


class UpscalerBackend(ABC):
    """Contract of an upscaling collaborator.

    Parameters
    ----------
    scaling_factor : int
        Factor applied to both width and height by ``resolve``
    """

    def __init__(self, scaling_factor: int = SCALING_FACTOR) -> None:
        if isinstance(scaling_factor, bool) or not isinstance(scaling_factor, int):
            raise ValueError(f"scaling_factor must be a positive integer, got {scaling_factor!r}")
        if scaling_factor <= 0:
            raise ValueError(f"scaling_factor must be a positive integer, got {scaling_factor}")
        self._scaling_factor = scaling_factor
        self._closed = False

    @property
    def scaling_factor(self) -> int:
        return self._scaling_factor

    @property
    def closed(self) -> bool:
        return self._closed

    @classmethod
    @abstractmethod
    async def open(cls, source: str, **kwargs) -> "UpscalerBackend":
        """Open the model or service behind ``source``."""

    @abstractmethod
    async def resolve(self, image: RasterImage) -> RasterImage:
        """Return ``image`` upscaled by ``scaling_factor``."""

    async def resolve_batch(self, images: Sequence[RasterImage]) -> list[RasterImage]:
        """Upscale several patches. Sequential unless a backend batches natively."""
        return [await self.resolve(image) for image in images]

    @abstractmethod
    async def close(self) -> None:
        """Release model or network resources. Safe to call more than once."""

    def _check_open(self) -> None:
        if self._closed:
            raise ResolveError(f"{type(self).__name__} has been closed")

    def _expected_size(self, image: RasterImage) -> tuple[int, int]:
        return (image.width * self._scaling_factor, image.height * self._scaling_factor)

    async def __aenter__(self) -> "UpscalerBackend":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class OnnxUpscaler(UpscalerBackend):
    """On-device super-resolution through onnxruntime.

    The model takes a float32 NHWC RGB batch with values in [0, 255] and
    returns the upscaled batch in the same layout.
    """

    def __init__(self, session: rt.InferenceSession, scaling_factor: int = SCALING_FACTOR):
        super().__init__(scaling_factor)
        self.session = session
        self.input_name = session.get_inputs()[0].name

    @classmethod
    async def open(
        cls,
        source: str,
        scaling_factor: int = SCALING_FACTOR,
        providers: list[str] | None = None,
    ) -> "OnnxUpscaler":
        path = Path(source)
        if not path.is_file():
            raise LoadError(f"Model file not found: {source}")
        try:
            session = await asyncio.to_thread(
                rt.InferenceSession, str(path), providers=providers
            )
        except Exception as e:
            raise LoadError(f"Could not load model {source}: {e}") from e
        return cls(session, scaling_factor=scaling_factor)

    def _predict(self, batch: np.ndarray) -> np.ndarray:
        outputs = self.session.run(
            output_names=None, input_feed={self.input_name: batch.astype(np.float32)}
        )
        return np.clip(outputs[0], 0, 255).round().astype(np.uint8)

    def _to_raster(self, output: np.ndarray, image: RasterImage) -> RasterImage:
        width, height = self._expected_size(image)
        if output.shape != (height, width, 3):
            raise ResolveError(
                f"Model returned shape {output.shape}, expected {(height, width, 3)}"
            )
        rgba = np.empty((height, width, 4), dtype=np.uint8)
        rgba[..., :3] = output
        rgba[..., 3] = 255
        return RasterImage(rgba)

    async def _run(self, batch: np.ndarray) -> np.ndarray:
        self._check_open()
        try:
            return await asyncio.to_thread(self._predict, batch)
        except Exception as e:
            raise ResolveError(f"Inference failed: {e}") from e

    async def resolve(self, image: RasterImage) -> RasterImage:
        batch = image.data[np.newaxis, ..., :3]
        output = await self._run(batch)
        return self._to_raster(output[0], image)

    async def resolve_batch(self, images: Sequence[RasterImage]) -> list[RasterImage]:
        if not images:
            return []
        if len({image.shape for image in images}) != 1:
            return await super().resolve_batch(images)
        batch = np.stack([image.data[..., :3] for image in images])
        outputs = await self._run(batch)
        return [self._to_raster(output, image) for output, image in zip(outputs, images)]

    async def close(self) -> None:
        self.session = None
        self._closed = True


class RemoteUpscaler(UpscalerBackend):
    """Super-resolution through an HTTP service.

    Each patch is POSTed as planar RGB to ``<base_url>/api/v1/upscale`` with
    its width and height in the query string.
    """

    def __init__(self, config: RemoteConfig, session: aiohttp.ClientSession | None = None):
        super().__init__(config.scaling_factor)
        self.config = config
        self._session = session

    @classmethod
    async def open(
        cls,
        source: str,
        scaling_factor: int = SCALING_FACTOR,
        timeout_s: float = REMOTE_TIMEOUT_S,
    ) -> "RemoteUpscaler":
        try:
            config = RemoteConfig(
                base_url=source, scaling_factor=scaling_factor, timeout_s=timeout_s
            )
        except ValidationError as e:
            raise LoadError(f"Invalid upscaling service URL {source!r}") from e
        return cls(config)

    @property
    def endpoint(self) -> str:
        return self.config.base_url + UPSCALE_ENDPOINT

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
            )
        return self._session

    async def resolve(self, image: RasterImage) -> RasterImage:
        self._check_open()
        params = {"width": str(image.width), "height": str(image.height)}
        body = to_planar(image)
        try:
            async with self._get_session().post(
                self.endpoint,
                params=params,
                data=body,
                headers={"Content-Type": "application/octet-stream"},
            ) as response:
                if response.status != 200:
                    raise ResolveError(f"Upscaling service returned HTTP {response.status}")
                payload = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ResolveError(f"Upscaling request to {self.endpoint} failed: {e}") from e

        width, height = self._expected_size(image)
        try:
            return from_planar(payload, width, height)
        except ValueError as e:
            raise ResolveError(str(e)) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._closed = True
