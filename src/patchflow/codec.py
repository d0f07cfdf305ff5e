"""Planar RGB wire format of the remote upscaling service.

A patch travels as all red samples, then all green, then all blue, one byte
each. Alpha is dropped on the way out and restored as fully opaque on the
way back.
"""

import numpy as np

from patchflow.core import RasterImage

PLANES = 3


def to_planar(image: RasterImage) -> bytes:
    """Encode the RGB planes of ``image``."""
    rgb = image.data[..., :PLANES]
    return np.ascontiguousarray(rgb.transpose(2, 0, 1)).tobytes()


def from_planar(payload: bytes, width: int, height: int) -> RasterImage:
    """Decode a planar RGB payload of ``width`` x ``height`` pixels."""
    expected = PLANES * width * height
    if len(payload) != expected:
        raise ValueError(
            f"Planar payload holds {len(payload)} bytes, expected {expected} for {width}x{height}"
        )
    planes = np.frombuffer(payload, dtype=np.uint8).reshape(PLANES, height, width)
    rgba = np.empty((height, width, PLANES + 1), dtype=np.uint8)
    rgba[..., :PLANES] = planes.transpose(1, 2, 0)
    rgba[..., PLANES] = 255
    return RasterImage(rgba)
