import copy
import logging
import os
import threading
from datetime import timedelta
from time import perf_counter
from typing import Optional

from PIL import Image

from variants.catalog import Catalog, MissingBaseMetadataError
from variants.classes import (
    CatalogRecord,
    ConversionStrategy,
    FormatEntry,
    GenerationResult,
    SizeVariant,
    SourceId,
    SourceImage,
    UpstreamSize,
)
from variants.constants import Constants
from variants.utils.filename import FilenameUtils
from variants.utils.image import ImageCodec, ImageProcessor


class CatalogRecordBuilder:
    """Accumulates a CatalogRecord without handing out references to its internals."""

    def __init__(self, source_id: SourceId, file: Optional[str] = None):
        self._record = CatalogRecord(source_id=str(source_id), file=file)

    @classmethod
    def from_size_catalog(cls, source: SourceImage) -> "CatalogRecordBuilder":
        """
        Base metadata for a source: the original plus every upstream size, each carrying
        the format of its own file.
        """
        builder = cls(source.id, file=source.file)

        original_filename = os.path.basename(source.path)
        builder.add_size(Constants.ORIGINAL_SIZE_NAME, source.width, source.height)
        builder.add_format(
            Constants.ORIGINAL_SIZE_NAME,
            FilenameUtils.get_format(original_filename),
            FormatEntry(
                file=original_filename,
                mime_type=Constants.mime_for_format(
                    FilenameUtils.get_format(original_filename)
                ),
                file_size=source.filesize,
            ),
        )

        for size_name, size in source.sizes.items():
            format = FilenameUtils.get_format(size.file)
            builder.add_size(size_name, size.width, size.height)
            builder.add_format(
                size_name,
                format,
                FormatEntry(
                    file=size.file,
                    mime_type=Constants.mime_for_format(format),
                    file_size=size.filesize,
                ),
            )

        return builder

    def add_size(self, size_name: str, width: int, height: int) -> "CatalogRecordBuilder":
        size = self._record.sizes.get(size_name)
        if size is None:
            self._record.sizes[size_name] = SizeVariant(width=width, height=height)
        else:
            size.width, size.height = width, height
        return self

    def add_format(
        self, size_name: str, format: str, entry: FormatEntry
    ) -> "CatalogRecordBuilder":
        size = self._record.sizes.get(size_name)
        if size is None:
            raise MissingBaseMetadataError(
                f"Size '{size_name}' has to be added before its formats"
            )
        size.formats[format] = copy.copy(entry)
        return self

    def build(self) -> CatalogRecord:
        return copy.deepcopy(self._record)


class VariantGenerator:
    """
    Writes every planned (size, format) variant of a source image and records it in the
    catalog. A failing pair is logged and skipped, the remaining pairs still run.
    """

    def __init__(self, *, catalog: Catalog, codec: ImageCodec):
        self._logger = logging.getLogger(__name__)
        self._catalog = catalog
        self._codec = codec

    def generate(
        self,
        source: SourceImage,
        strategies: list[ConversionStrategy],
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        start = perf_counter()
        result = GenerationResult(record=None)
        base = CatalogRecordBuilder.from_size_catalog(source).build()

        if not self._has_base_metadata(source.id):
            self._logger.debug(f"Synthesizing base metadata for source '{source.id}'")
            self._catalog.upsert(source.id, base)

        size_names = [Constants.ORIGINAL_SIZE_NAME] + sorted(source.sizes)

        for strategy in strategies:
            for size_name in size_names:
                if self._drop_if_cancelled(source, cancel_event, result):
                    return result

                self._generate_variant(source, size_name, strategy, base, result)

        # a delete may have arrived while the last pair was being written
        if self._drop_if_cancelled(source, cancel_event, result):
            return result

        result.record = self._catalog.get(source.id)

        end = perf_counter()
        self._logger.info(
            f"Generated {len(result.generated)} variants for source '{source.id}' "
            f"({len(result.failures)} failed) in {timedelta(seconds=end - start)}"
        )
        return result

    def ensure_breakpoint_sizes(
        self, source: SourceImage, breakpoints: list[int]
    ) -> SourceImage:
        """
        Returns `source` with a scaled rendition for every breakpoint narrower than the
        original. Widths the upstream catalog already covers are not written again.
        """
        known_widths = {size.width for size in source.sizes.values()}
        added = {}

        for width in breakpoints:
            if width >= source.width or width in known_widths:
                continue

            size_name = f"{Constants.BREAKPOINT_SIZE_PREFIX}{width}"
            if size_name in source.sizes:
                continue

            try:
                filename, scaled_width, scaled_height = (
                    ImageProcessor.write_scaled_copy_to_filesystem(
                        source_filename=source.path, width=width
                    )
                )
            except (OSError, Image.DecompressionBombError):
                self._logger.exception(
                    f"Failed writing {width}px rendition of '{source.path}'"
                )
                continue

            added[size_name] = UpstreamSize(
                file=os.path.basename(filename),
                width=scaled_width,
                height=scaled_height,
                filesize=os.path.getsize(filename),
            )
            known_widths.add(scaled_width)

        if not added:
            return source

        self._logger.debug(
            f"Added breakpoint sizes {sorted(added)} for source '{source.id}'"
        )
        return source.with_sizes(added)

    def _drop_if_cancelled(
        self,
        source: SourceImage,
        cancel_event: Optional[threading.Event],
        result: GenerationResult,
    ) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False

        self._logger.info(
            f"Generation for source '{source.id}' was cancelled, dropping its record"
        )
        self._catalog.delete(source.id)
        result.cancelled = True
        result.record = None
        return True

    def _has_base_metadata(self, source_id: SourceId) -> bool:
        try:
            record = self._catalog.get(source_id)
        except ValueError:
            return False
        return record is not None and bool(record.sizes)

    def _generate_variant(
        self,
        source: SourceImage,
        size_name: str,
        strategy: ConversionStrategy,
        base: CatalogRecord,
        result: GenerationResult,
    ):
        format = strategy.target_format
        source_path = source.size_path(size_name)
        target_path = FilenameUtils.get_sibling_filename(source_path, format)

        if target_path == source_path:
            self._logger.warning(
                f"Not overwriting '{source_path}' with its own {format} variant"
            )
            result.failures.append((size_name, format, "target equals source"))
            return

        try:
            self._codec.encode(
                source_path, target_path, strategy.target_mime, strategy.quality
            )
            file_size = os.path.getsize(target_path)
        except OSError as e:
            self._logger.exception(
                f"Failed to create {format} for {size_name} ({source_path})"
            )
            result.failures.append((size_name, format, str(e)))
            return

        entry = FormatEntry(
            file=os.path.basename(target_path),
            mime_type=strategy.target_mime,
            file_size=file_size,
        )

        try:
            self._catalog.add_format_variation(
                source.id,
                size_name,
                format,
                entry,
                base=base,
                upstream_sizes=source.sizes,
                original_dimensions=(source.width, source.height),
            )
        except MissingBaseMetadataError as e:
            self._logger.error(str(e))
            result.failures.append((size_name, format, str(e)))
            return

        self._logger.debug(f"Created {format} for {size_name} ({target_path})")
        result.generated.append((size_name, format))


def annotate_size_catalog(size_catalog: dict, record: CatalogRecord) -> dict:
    """
    Returns a copy of an upstream size catalog with the converted formats of each size
    listed under a `converted` key, for consumers that only read the upstream catalog.
    """
    annotated = copy.deepcopy(size_catalog)

    def converted_formats(size: SizeVariant, own_file: Optional[str]) -> dict:
        own_format = FilenameUtils.get_format(own_file) if own_file else None
        return {
            format: {
                **entry.to_dict(),
                "width": size.width,
                "height": size.height,
            }
            for format, entry in sorted(size.formats.items())
            if format != own_format
        }

    original = record.sizes.get(Constants.ORIGINAL_SIZE_NAME)
    if original is not None:
        converted = converted_formats(original, annotated.get("file"))
        if converted:
            annotated["converted"] = converted

    for size_name, size_info in (annotated.get("sizes") or {}).items():
        size = record.sizes.get(size_name)
        if size is None or not isinstance(size_info, dict):
            continue
        converted = converted_formats(size, size_info.get("file"))
        if converted:
            size_info["converted"] = converted

    return annotated
