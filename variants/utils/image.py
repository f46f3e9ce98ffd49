import logging
import os
from abc import ABC, abstractmethod
from typing import Union

from PIL import Image, ImageOps, UnidentifiedImageError, features

from variants.constants import Constants
from variants.utils.filename import FilenameUtils


class CodecError(OSError):
    pass


class ImageCodec(ABC):
    """Re-encodes one image file into another format."""

    @abstractmethod
    def encode(
        self, source_path: str, target_path: str, target_mime: str, quality: int
    ) -> None:
        """Raises CodecError if the target file could not be written."""

    @property
    def supported_mime_types(self) -> frozenset[str]:
        return frozenset(Constants.FORMAT_MIME_TYPES.values())


class PillowCodec(ImageCodec):
    # Pillow save() format names per target mime type
    PILLOW_FORMATS = {
        "image/avif": "AVIF",
        "image/webp": "WEBP",
        "image/png": "PNG",
        "image/jpeg": "JPEG",
        "image/gif": "GIF",
    }
    # formats without an alpha channel
    RGB_ONLY = ["JPEG"]

    def __init__(self):
        self._logger = logging.getLogger(__name__)

    @property
    def supported_mime_types(self) -> frozenset[str]:
        supported = set()
        for mime_type, pillow_format in self.PILLOW_FORMATS.items():
            if pillow_format == "AVIF" and not features.check("avif"):
                continue
            if pillow_format == "WEBP" and not features.check("webp"):
                continue
            supported.add(mime_type)
        return frozenset(supported)

    def encode(
        self, source_path: str, target_path: str, target_mime: str, quality: int
    ) -> None:
        pillow_format = self.PILLOW_FORMATS.get(target_mime)
        if pillow_format is None:
            raise CodecError(f"No encoder for mime type '{target_mime}'")

        save_properties = {}
        # PNG is lossless, quality only applies to the lossy encoders
        if pillow_format != "PNG":
            save_properties["quality"] = quality

        try:
            with Image.open(source_path) as source:
                image = ImageOps.exif_transpose(source)
                if pillow_format in self.RGB_ONLY:
                    image = image.convert("RGB")
                elif image.mode not in ("RGB", "RGBA", "L", "LA"):
                    image = image.convert("RGBA")

                image.save(target_path, format=pillow_format, **save_properties)
        except (OSError, ValueError, KeyError, Image.DecompressionBombError) as e:
            if os.path.isfile(target_path):
                os.remove(target_path)
            raise CodecError(
                f"Failed encoding '{source_path}' as {target_mime}: {e}"
            ) from e

        self._logger.debug(
            f"Encoded '{source_path}' as {target_mime} to '{target_path}' (quality={quality})"
        )


class ImageProcessor:
    @classmethod
    def resize(
        cls,
        image: Image.Image,
        width: Union[int, None] = None,
        height: Union[int, None] = None,
    ) -> Image.Image:
        if not width and not height:
            return image  # nothing to do

        width, height = cls.calculate_scaled_size(
            image.width, image.height, width=width, height=height
        )

        new_image = image.resize((width, height), Image.Resampling.LANCZOS)
        new_image.format = image.format

        return new_image

    @staticmethod
    def calculate_scaled_size(
        original_width: int,
        original_height: int,
        width: Union[int, None] = None,
        height: Union[int, None] = None,
    ) -> tuple[int, int]:
        if not width and not height:
            return original_width, original_height  # nothing to do

        aspect_ratio = original_width / original_height

        if not width:
            width = int(height * aspect_ratio)

        if not height:
            height = int(width / aspect_ratio)

        return width, height

    @staticmethod
    def probe(path: str) -> tuple[int, int, str]:
        """Returns width, height and mime type of the image at `path`."""
        try:
            with Image.open(path) as image:
                mime_type = Image.MIME.get(image.format)
                if not mime_type:
                    mime_type = Constants.mime_for_format(FilenameUtils.get_format(path))
                return image.width, image.height, mime_type
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise ValueError(f"'{path}' is not a readable image") from e

    @classmethod
    def write_scaled_copy_to_filesystem(
        cls, *, source_filename: str, width: int
    ) -> tuple[str, int, int]:
        """
        Writes a copy of `source_filename` scaled to `width` next to the source.

        The copy keeps the source format and is named `{stem}-{width}x{height}{ext}`.
        Returns the new filename and its dimensions.
        """
        with Image.open(source_filename) as source:
            image = ImageOps.exif_transpose(source)
            image.format = source.format
            image = cls.resize(image, width=width)

            filename = FilenameUtils.get_sized_filename(
                source_filename, image.width, image.height
            )
            if image.format == "JPEG" and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(filename, format=source.format)

            return filename, image.width, image.height
