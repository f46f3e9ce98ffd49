import copy
import os
from dataclasses import dataclass, field
from typing import Optional, Union

from variants.constants import Constants

SourceId = Union[int, str]


@dataclass(frozen=True)
class UpstreamSize:
    file: str
    width: int
    height: int
    filesize: int = 0


@dataclass(frozen=True)
class SourceImage:
    """
    An uploaded image as handed over by the upload subsystem.

    `path` is the absolute path of the original file, `file` the same file relative to the
    uploads directory. `sizes` is the upstream size catalog: every named rendition the upload
    subsystem already wrote next to the original.
    """

    id: SourceId
    path: str
    width: int
    height: int
    mime_type: str
    file: Optional[str] = None
    filesize: int = 0
    sizes: dict[str, UpstreamSize] = field(default_factory=dict)

    @property
    def directory(self) -> str:
        return os.path.dirname(self.path)

    def size_path(self, size_name: str) -> str:
        if size_name == Constants.ORIGINAL_SIZE_NAME:
            return self.path
        return os.path.join(self.directory, self.sizes[size_name].file)

    def with_sizes(self, sizes: dict[str, UpstreamSize]) -> "SourceImage":
        merged = dict(self.sizes)
        merged.update(sizes)
        return SourceImage(
            id=self.id,
            path=self.path,
            width=self.width,
            height=self.height,
            mime_type=self.mime_type,
            file=self.file,
            filesize=self.filesize,
            sizes=merged,
        )


@dataclass
class FormatEntry:
    file: str
    mime_type: str
    file_size: int = 0

    def __post_init__(self):
        if self.file_size < 0:
            raise ValueError(f"file_size can't be negative (got {self.file_size})")

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FormatEntry":
        return cls(
            file=str(data["file"]),
            mime_type=str(data["mime_type"]),
            file_size=int(data.get("file_size") or 0),
        )


@dataclass
class SizeVariant:
    width: int
    height: int
    formats: dict[str, FormatEntry] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "formats": {
                format: entry.to_dict() for format, entry in sorted(self.formats.items())
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SizeVariant":
        formats = data.get("formats") or {}
        if not isinstance(formats, dict):
            raise TypeError("formats has to be a mapping")

        return cls(
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            formats={
                str(format): FormatEntry.from_dict(entry)
                for format, entry in formats.items()
            },
        )


@dataclass
class CatalogRecord:
    source_id: str
    sizes: dict[str, SizeVariant] = field(default_factory=dict)
    file: Optional[str] = None

    def merge(self, other: "CatalogRecord") -> "CatalogRecord":
        """
        Returns a new record with the sizes and formats of `other` layered on top of this one.

        Merging happens per format entry: sizes and formats only present in this record are
        kept, entries present in both are taken from `other`.
        """
        merged = copy.deepcopy(self)
        if other.file:
            merged.file = other.file

        for size_name, size in other.sizes.items():
            existing = merged.sizes.get(size_name)
            if existing is None:
                merged.sizes[size_name] = copy.deepcopy(size)
                continue

            if size.width:
                existing.width = size.width
            if size.height:
                existing.height = size.height
            for format, entry in size.formats.items():
                existing.formats[format] = copy.deepcopy(entry)

        return merged

    def get_format(self, size_name: str, format: str) -> Optional[FormatEntry]:
        size = self.sizes.get(size_name)
        if size is None:
            return None
        return size.formats.get(format)

    def available_formats(self) -> set[str]:
        return {format for size in self.sizes.values() for format in size.formats}

    def has_format(self, format: str) -> bool:
        return any(format in size.formats for size in self.sizes.values())

    def sizes_with_format(self, format: str) -> list[tuple[SizeVariant, FormatEntry]]:
        """Returns (size, entry) pairs for the given format, narrowest size first."""
        pairs = [
            (size, size.formats[format])
            for _, size in sorted(self.sizes.items())
            if format in size.formats
        ]
        return sorted(pairs, key=lambda pair: pair[0].width)

    def to_dict(self) -> dict:
        data = {
            "sizes": {
                size_name: size.to_dict() for size_name, size in sorted(self.sizes.items())
            }
        }
        if self.file:
            data["file"] = self.file
        return data

    @classmethod
    def from_dict(cls, source_id: SourceId, data: dict) -> "CatalogRecord":
        try:
            sizes = data["sizes"]
            if not isinstance(sizes, dict):
                raise TypeError("sizes has to be a mapping")

            return cls(
                source_id=str(source_id),
                file=data.get("file"),
                sizes={
                    str(size_name): SizeVariant.from_dict(size)
                    for size_name, size in sizes.items()
                },
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise ValueError(
                f"Malformed catalog record for source '{source_id}': {e}"
            ) from e


@dataclass(frozen=True)
class ConversionStrategy:
    target_format: str
    target_mime: str
    quality: int


@dataclass
class GenerationResult:
    record: Optional[CatalogRecord]
    generated: list[tuple[str, str]] = field(default_factory=list)
    failures: list[tuple[str, str, str]] = field(default_factory=list)
    cancelled: bool = False
    size_catalog: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled


@dataclass
class HealthCheckResponse:
    status: str = "ok"


@dataclass
class StatusResponse:
    version: str
    timestamp: int
    status: str = "active"


@dataclass
class UpstreamSizeBody:
    file: str
    width: int
    height: int
    filesize: int = 0


@dataclass
class UploadEventBody:
    file: str
    width: int = 0
    height: int = 0
    filesize: int = 0
    mime_type: Optional[str] = None
    sizes: dict[str, UpstreamSizeBody] = field(default_factory=dict)


@dataclass
class UploadAcceptedResponse:
    source_id: str
    planned_formats: list[str]


@dataclass
class SizeSavings:
    size_name: str
    original_format: str
    original_size: str
    best_format: str
    best_size: str
    savings: Optional[str]


@dataclass
class SavingsReport:
    source_id: str
    sizes: list[SizeSavings]
