import os
import re

from variants.constants import Constants

SIZE_SUFFIX_PATTERN = re.compile(r"-\d+x\d+(?=\.[A-Za-z0-9]+$)")


class FilenameUtils:
    @staticmethod
    def get_sibling_filename(source_filename: str, format: str) -> str:
        """Same directory and basename as the source, extension of the target format."""
        stem, _ = os.path.splitext(source_filename)
        return f"{stem}.{Constants.extension_for_format(format)}"

    @staticmethod
    def get_sized_filename(source_filename: str, width: int, height: int) -> str:
        stem, extension = os.path.splitext(source_filename)
        return f"{stem}-{width}x{height}{extension}"

    @staticmethod
    def get_format(filename: str) -> str:
        _, extension = os.path.splitext(filename)
        return Constants.format_from_extension(extension)

    @staticmethod
    def strip_size_suffix(filename: str) -> str:
        return SIZE_SUFFIX_PATTERN.sub("", filename)

    @staticmethod
    def strip_extension(filename: str) -> str:
        return os.path.splitext(filename)[0]

    @staticmethod
    def has_allowed_extension(filename: str) -> bool:
        return (
            os.path.splitext(filename.lower())[1]
            in Constants.ALLOWED_INPUT_FILE_EXTENSIONS
        )
