import logging
import os
from pathlib import Path
from threading import Thread
from typing import Optional

import inotify.adapters
import inotify.constants

from variants.context import AppContext
from variants.utils.filename import FilenameUtils


class UploadWatcher:
    """
    Turns filesystem events in the uploads directory into upload and deletion hooks.

    Files written by the generator itself (format variants and scaled renditions of a known
    source) are recognized by their name and ignored.
    """

    _thread: Optional[Thread] = None

    def __init__(self, context: AppContext):
        self._logger = logging.getLogger(__name__)
        self._context = context
        self._directory = context.uploads_dir

    def dispatch(self):
        self._logger.info("Dispatching inotify thread")

        self._thread = Thread(target=self._watch_fs_events, daemon=True)
        self._thread.start()

    def _watch_fs_events(self):
        logger = logging.getLogger(f"{__name__}.inotify-thread")
        try:
            i = inotify.adapters.InotifyTree(
                self._directory,
                mask=inotify.constants.IN_DELETE | inotify.constants.IN_CLOSE_WRITE,
            )
            logger.info(f"Added watch for folder '{self._directory}'")

            for event in i.event_gen(yield_nones=False):
                (event_obj, _, path, filename) = event
                logger.debug(event)
                self.handle_event(event_obj.mask, os.path.join(path, filename))

        except (KeyboardInterrupt, InterruptedError) as e:
            logger.info(f"{type(e).__name__} received. Stopping thread.")

    def handle_event(self, mask: int, path: str) -> bool:
        """Returns whether the event triggered a hook."""
        relative_path = self.relative_path(path)

        if (
            mask & inotify.constants.IN_CLOSE_WRITE
        ) == inotify.constants.IN_CLOSE_WRITE:
            if not FilenameUtils.has_allowed_extension(relative_path):
                self._logger.warning(
                    f"Ignoring file '{relative_path}' because it doesn't have an allowed file extension"
                )
                return False

            if self.is_derived_file(relative_path):
                self._logger.debug(f"Ignoring generated file '{relative_path}'")
                return False

            self._logger.info(f"Detected new file '{relative_path}', generating variants")
            try:
                source = self._context.source_image_from_file(path)
            except (OSError, ValueError):
                self._logger.exception(f"Exception while opening '{relative_path}'")
                return False

            self._context.submit_upload(source)
            return True

        if (mask & inotify.constants.IN_DELETE) == inotify.constants.IN_DELETE:
            source_id = self._context.catalog.find_id_by_file(relative_path)
            if source_id is None:
                return False

            self._logger.info(f"Detected deleted file '{relative_path}', dropping its variants")
            self._context.handle_delete(source_id)
            return True

        return False

    def is_derived_file(self, relative_path: str) -> bool:
        match = self._context.catalog.find_by_stem(
            FilenameUtils.strip_extension(relative_path)
        )
        if match is not None:
            # same stem, other extension: a format variant of a known original
            return match[1] != relative_path

        stripped = FilenameUtils.strip_size_suffix(relative_path)
        if stripped == relative_path:
            return False

        # a scaled rendition, derived if its original is known
        return (
            self._context.catalog.find_by_stem(FilenameUtils.strip_extension(stripped))
            is not None
        )

    def relative_path(self, path: str) -> str:
        return Path(os.path.relpath(path, self._directory)).as_posix()
