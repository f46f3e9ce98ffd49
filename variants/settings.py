import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from variants.constants import Constants
from variants.utils.general import GeneralUtils

ENV_PREFIX = "VARIANTS"


def _env_bool(environ: Mapping[str, str], key: str, default: bool) -> bool:
    value = environ.get(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int_list(environ: Mapping[str, str], key: str, default: list[int]) -> list[int]:
    value = environ.get(key)
    if not value:
        return list(default)
    return [int(part) for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    """
    Read-only view of the conversion and rendering options.

    The settings are owned by whoever constructs them; nothing in the package writes to them.
    """

    convert_to_webp: bool = True
    convert_to_avif: bool = True
    image_quality: int = Constants.DEFAULT_IMAGE_QUALITY
    breakpoints: list[int] = field(
        default_factory=lambda: list(Constants.DEFAULT_BREAKPOINTS)
    )
    enable_adaptive_images: bool = True
    lazy_load: bool = True
    generate_breakpoint_sizes: bool = False
    # "{format}_quality" -> quality, replaces the capped value for that format
    quality_overrides: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self, "image_quality", GeneralUtils.clamp(int(self.image_quality), 0, 100)
        )
        object.__setattr__(
            self, "breakpoints", sorted({int(width) for width in self.breakpoints if width > 0})
        )

    def quality_for_format(self, format: str) -> int:
        quality = self.image_quality
        cap = Constants.QUALITY_CAPS.get(format)
        if cap is not None:
            quality = min(quality, cap)

        override = self.quality_overrides.get(Constants.get_quality_override_key(format))
        if override is not None:
            quality = GeneralUtils.clamp(int(override), 0, 100)

        return quality

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            environ = os.environ

        quality_overrides = {}
        for format in Constants.FORMAT_MIME_TYPES:
            value = environ.get(f"{ENV_PREFIX}_{format.upper()}_QUALITY")
            if value:
                quality_overrides[Constants.get_quality_override_key(format)] = int(value)

        return cls(
            convert_to_webp=_env_bool(environ, f"{ENV_PREFIX}_CONVERT_TO_WEBP", True),
            convert_to_avif=_env_bool(environ, f"{ENV_PREFIX}_CONVERT_TO_AVIF", True),
            image_quality=int(
                environ.get(
                    f"{ENV_PREFIX}_IMAGE_QUALITY", Constants.DEFAULT_IMAGE_QUALITY
                )
            ),
            breakpoints=_env_int_list(
                environ, f"{ENV_PREFIX}_BREAKPOINTS", Constants.DEFAULT_BREAKPOINTS
            ),
            enable_adaptive_images=_env_bool(
                environ, f"{ENV_PREFIX}_ENABLE_ADAPTIVE_IMAGES", True
            ),
            lazy_load=_env_bool(environ, f"{ENV_PREFIX}_LAZY_LOAD", True),
            generate_breakpoint_sizes=_env_bool(
                environ, f"{ENV_PREFIX}_GENERATE_BREAKPOINT_SIZES", False
            ),
            quality_overrides=quality_overrides,
        )
