"""
Default parameters and configuration models for patch enhancement.
"""

from typing import Final

from pydantic import BaseModel, Field, field_validator

# Core parameters
PATCH_SIZE: Final[int] = 128
SCALING_FACTOR: Final[int] = 4
UPSCALE_ENDPOINT: Final[str] = "/api/v1/upscale"
REMOTE_TIMEOUT_S: Final[float] = 60.0


class EnhancerConfig(BaseModel):
    """
    Configuration for the ImageEnhancer.
    Defines the patch grid and how the enhanced layer is composited.
    """

    patch_size: int = Field(default=PATCH_SIZE, gt=0)
    scaling_factor: int = Field(default=SCALING_FACTOR, gt=0)
    enhanced_opacity: float = Field(default=1.0, gt=0.0, le=1.0)


class RemoteConfig(BaseModel):
    """
    Configuration for the HTTP upscaling service.
    """

    base_url: str
    timeout_s: float = Field(default=REMOTE_TIMEOUT_S, gt=0.0)
    scaling_factor: int = Field(default=SCALING_FACTOR, gt=0)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        scheme, _, rest = value.partition("://")
        if scheme not in ("http", "https") or not rest.strip("/"):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")
