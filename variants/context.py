import dataclasses
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Optional

from variants.catalog import Catalog
from variants.classes import (
    GenerationResult,
    SavingsReport,
    SizeSavings,
    SourceId,
    SourceImage,
    UploadEventBody,
    UpstreamSize,
)
from variants.constants import Constants
from variants.generator import CatalogRecordBuilder, VariantGenerator, annotate_size_catalog
from variants.pipeline import ContentPipeline
from variants.planner import ConversionPlanner
from variants.rewriter import MarkupRewriter
from variants.settings import Settings
from variants.utils.filename import FilenameUtils
from variants.utils.general import GeneralUtils
from variants.utils.image import ImageCodec, ImageProcessor, PillowCodec
from variants.utils.url import UploadsUrlResolver


class AppContext:
    """
    Owns every component of the service. Built once at startup and passed to whoever needs it.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        catalog: Catalog,
        codec: ImageCodec,
        uploads_dir: str,
        uploads_url: str,
        max_workers: int = 4,
    ):
        self._logger = logging.getLogger(__name__)

        self.settings = settings
        self.catalog = catalog
        self.codec = codec
        self.uploads_dir = os.path.abspath(uploads_dir)
        self.uploads_url = uploads_url

        self.planner = ConversionPlanner()
        self.generator = VariantGenerator(catalog=catalog, codec=codec)
        self.resolver = UploadsUrlResolver(uploads_url, catalog.find_id_by_file)
        self.rewriter = MarkupRewriter(
            catalog=catalog,
            resolver=self.resolver,
            enabled_formats=self._server_supported_formats(codec),
            lazy_load=settings.lazy_load,
            enabled=settings.enable_adaptive_images,
        )
        self.pipeline = ContentPipeline([self.rewriter])

        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._in_flight: dict[str, threading.Event] = {}
        self._in_flight_guard = threading.Lock()

        self._logger.info(
            f"Created application context with uploads directory='{self.uploads_dir}' and uploads url='{uploads_url}'"
        )

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        *,
        connection_string: str = "sqlite://",
        uploads_dir: str = "uploads",
        uploads_url: str = "/uploads",
        codec: Optional[ImageCodec] = None,
        max_workers: int = 4,
    ) -> "AppContext":
        return cls(
            settings=settings if settings is not None else Settings(),
            catalog=Catalog(connection_string=connection_string),
            codec=codec if codec is not None else PillowCodec(),
            uploads_dir=uploads_dir,
            uploads_url=uploads_url,
            max_workers=max_workers,
        )

    def source_image_from_upload(
        self, source_id: SourceId, upload: UploadEventBody
    ) -> SourceImage:
        path = os.path.join(self.uploads_dir, upload.file)
        width, height, mime_type = upload.width, upload.height, upload.mime_type

        if not (width and height and mime_type):
            probed_width, probed_height, probed_mime_type = ImageProcessor.probe(path)
            width = width or probed_width
            height = height or probed_height
            mime_type = mime_type or probed_mime_type

        filesize = upload.filesize
        if not filesize and os.path.isfile(path):
            filesize = os.path.getsize(path)

        return SourceImage(
            id=source_id,
            path=path,
            width=width,
            height=height,
            mime_type=mime_type,
            file=upload.file,
            filesize=filesize,
            sizes={
                size_name: UpstreamSize(
                    file=size.file,
                    width=size.width,
                    height=size.height,
                    filesize=size.filesize,
                )
                for size_name, size in upload.sizes.items()
            },
        )

    def source_image_from_file(self, path: str) -> SourceImage:
        """A source without upstream sizes, identified by its path below the uploads directory."""
        relative_path = Path(os.path.relpath(path, self.uploads_dir)).as_posix()
        width, height, mime_type = ImageProcessor.probe(path)

        return SourceImage(
            id=relative_path,
            path=os.path.abspath(path),
            width=width,
            height=height,
            mime_type=mime_type,
            file=relative_path,
            filesize=os.path.getsize(path),
        )

    def planned_formats(self, source: SourceImage) -> list[str]:
        return [
            strategy.target_format
            for strategy in self.planner.plan(source.mime_type, self.settings)
        ]

    def handle_upload(
        self, source: SourceImage, size_catalog: Optional[dict] = None
    ) -> GenerationResult:
        """
        Writes base metadata and every planned variant of `source`.

        If `size_catalog` is given, the result carries a copy of it annotated with the
        converted formats.
        """
        source_id = str(source.id)
        cancel_event = self._register(source_id)

        try:
            # recorded before any rendition is written, so the watcher treats them as derived
            self.catalog.upsert(
                source.id, CatalogRecordBuilder.from_size_catalog(source).build()
            )

            if self.settings.generate_breakpoint_sizes:
                source = self.generator.ensure_breakpoint_sizes(
                    source, self.settings.breakpoints
                )
                self.catalog.upsert(
                    source.id, CatalogRecordBuilder.from_size_catalog(source).build()
                )

            strategies = self.planner.plan(source.mime_type, self.settings)
            if strategies:
                result = self.generator.generate(source, strategies, cancel_event)
            else:
                self._logger.info(
                    f"No conversions planned for source '{source_id}' ({source.mime_type})"
                )
                result = GenerationResult(record=self.catalog.get(source.id))
        finally:
            self._unregister(source_id, cancel_event)

        if size_catalog is not None and result.record is not None:
            result.size_catalog = annotate_size_catalog(size_catalog, result.record)

        return result

    def handle_upload_event(
        self, source_id: SourceId, upload: UploadEventBody
    ) -> GenerationResult:
        source = self.source_image_from_upload(source_id, upload)
        return self.handle_upload(source, size_catalog=dataclasses.asdict(upload))

    def submit_upload(
        self, source: SourceImage, size_catalog: Optional[dict] = None
    ) -> Future:
        return self._executor.submit(self.handle_upload, source, size_catalog)

    def handle_delete(self, source_id: SourceId) -> bool:
        with self._in_flight_guard:
            cancel_event = self._in_flight.get(str(source_id))
        if cancel_event is not None:
            self._logger.info(f"Cancelling running generation for source '{source_id}'")
            cancel_event.set()

        return self.catalog.delete(source_id)

    def cleanup_orphans(self, existing_ids: Iterable[SourceId]) -> list[str]:
        """Deletes every record whose source no longer exists upstream."""
        existing = {str(source_id) for source_id in existing_ids}
        removed = []

        for source_id in self.catalog.get_ids():
            if source_id not in existing and self.catalog.delete(source_id):
                removed.append(source_id)

        if removed:
            self._logger.info(f"Removed {len(removed)} orphaned catalog records")
        return removed

    def render(self, html: str) -> str:
        return self.pipeline.apply(html)

    def savings_report(self, source_id: SourceId) -> Optional[SavingsReport]:
        record = self.catalog.get(source_id)
        if record is None:
            return None

        original_format = FilenameUtils.get_format(record.file) if record.file else None
        sizes = []

        for size_name, size in sorted(record.sizes.items()):
            baseline = size.formats.get(original_format) if original_format else None
            if baseline is None:
                continue

            candidates = [
                (format, entry)
                for format, entry in size.formats.items()
                if format != original_format and entry.file_size > 0
            ]
            if not candidates:
                continue

            best_format, best_entry = min(candidates, key=lambda pair: pair[1].file_size)
            sizes.append(
                SizeSavings(
                    size_name=size_name,
                    original_format=original_format,
                    original_size=GeneralUtils.format_file_size(baseline.file_size),
                    best_format=best_format,
                    best_size=GeneralUtils.format_file_size(best_entry.file_size),
                    savings=GeneralUtils.savings_percentage(
                        baseline.file_size, best_entry.file_size
                    ),
                )
            )

        return SavingsReport(source_id=str(source_id), sizes=sizes)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def _register(self, source_id: str) -> threading.Event:
        cancel_event = threading.Event()
        with self._in_flight_guard:
            self._in_flight[source_id] = cancel_event
        return cancel_event

    def _unregister(self, source_id: str, cancel_event: threading.Event):
        with self._in_flight_guard:
            if self._in_flight.get(source_id) is cancel_event:
                del self._in_flight[source_id]

    @staticmethod
    def _server_supported_formats(codec: ImageCodec) -> set[str]:
        return {
            Constants.format_for_mime(mime_type)
            for mime_type in codec.supported_mime_types
        }
