import os
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

from variants.classes import SourceId
from variants.constants import Constants
from variants.utils.filename import FilenameUtils


class UrlUtils:
    @staticmethod
    def is_valid_image_url(url: str) -> bool:
        path = urlparse(url).path
        if not path:
            return False

        extension = os.path.splitext(path)[1].lower().lstrip(".")
        return extension in Constants.VALID_IMAGE_URL_EXTENSIONS


class UploadsUrlResolver:
    """
    Maps a public image URL back to the id of the source image it was derived from.

    The URL has to live below `base_url`. A `-{width}x{height}` suffix in front of the
    extension is dropped, so sized renditions resolve to their original.
    """

    def __init__(self, base_url: str, lookup: Callable[[str], Optional[SourceId]]):
        self._base_url = base_url.rstrip("/")
        self._base_path = urlparse(self._base_url).path.rstrip("/")
        self._has_host = bool(urlparse(self._base_url).netloc)
        self._lookup = lookup

    def __call__(self, url: str) -> Optional[SourceId]:
        relative_path = self.relative_path(url)
        if relative_path is None:
            return None

        # an original may carry a size-like suffix itself, so the exact path goes first
        for candidate in dict.fromkeys(
            [relative_path, FilenameUtils.strip_size_suffix(relative_path)]
        ):
            source_id = self._lookup(candidate)
            if source_id is not None:
                return source_id
        return None

    def relative_path(self, url: str) -> Optional[str]:
        if not UrlUtils.is_valid_image_url(url):
            return None

        parsed = urlparse(url)
        if parsed.netloc and self._has_host:
            # absolute url, compare including scheme and host
            candidate = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
            prefix = f"{self._base_url}/"
        else:
            candidate = parsed.path
            prefix = f"{self._base_path}/"

        if not candidate.startswith(prefix):
            return None

        return unquote(candidate[len(prefix):]) or None
