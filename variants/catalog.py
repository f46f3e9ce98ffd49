import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine, delete, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from variants.classes import (
    CatalogRecord,
    FormatEntry,
    SizeVariant,
    SourceId,
    UpstreamSize,
)
from variants.constants import Constants
from variants.models import Base, CatalogRecordRow


class MissingBaseMetadataError(ValueError):
    pass


class Catalog:
    """
    Persistent store of the size/format variants known for each source image.

    Writes are merges: an upsert never removes sizes or formats that are already recorded.
    Writes for the same source id are serialized with a lock chosen from a fixed set of
    stripes, so writes for most other ids run independently.
    """

    LOCK_STRIPES = 64

    _logger: logging.Logger

    __engine: Engine = None

    def __init__(self, *, connection_string: str = "sqlite://"):
        self._logger = logging.getLogger(__name__)
        self._logger.info(
            f"Creating database engine with connection string '{connection_string}'"
        )

        # only echo SQL statements if we're logging at the debug level
        echo = self._logger.getEffectiveLevel() <= logging.DEBUG

        engine_args = {}
        if connection_string.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if connection_string in ("sqlite://", "sqlite:///:memory:"):
                # a single shared connection, otherwise every thread gets its own empty db
                engine_args["poolclass"] = StaticPool

        self.__engine = create_engine(connection_string, echo=echo, **engine_args)
        Base.metadata.create_all(self.__engine)
        self.__sessionmaker = sessionmaker(self.__engine, expire_on_commit=False)

        self.__locks = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

        assert self.__engine is not None

    def lock_for(self, source_id: SourceId) -> threading.Lock:
        return self.__locks[hash(str(source_id)) % len(self.__locks)]

    @contextmanager
    def lock(self, source_id: SourceId) -> Iterator[None]:
        """Holds the write lock of a single source id."""
        with self.lock_for(source_id):
            yield

    def get(self, source_id: SourceId) -> Optional[CatalogRecord]:
        with self.__sessionmaker() as session:
            row = session.get(CatalogRecordRow, str(source_id))
            if row is None:
                return None
            return CatalogRecord.from_dict(row.source_id, row.document)

    def upsert(self, source_id: SourceId, record: CatalogRecord) -> CatalogRecord:
        """Merges `record` into the stored record and returns the result."""
        with self.lock(source_id):
            return self._merge_and_save(str(source_id), record)

    def delete(self, source_id: SourceId) -> bool:
        with self.lock(source_id):
            with self.__sessionmaker.begin() as session:
                result = session.execute(
                    delete(CatalogRecordRow).where(
                        CatalogRecordRow.source_id == str(source_id)
                    )
                )
                deleted = result.rowcount > 0

        if deleted:
            self._logger.info(f"Deleted catalog record for source '{source_id}'")
        return deleted

    def add_format_variation(
        self,
        source_id: SourceId,
        size_name: str,
        format: str,
        entry: FormatEntry,
        *,
        base: Optional[CatalogRecord] = None,
        upstream_sizes: Optional[dict[str, UpstreamSize]] = None,
        original_dimensions: Optional[tuple[int, int]] = None,
    ) -> CatalogRecord:
        """
        Records a single format entry for one size of a source.

        If the size isn't known yet it is taken from `base`, then from `upstream_sizes`
        (or `original_dimensions` for the original). Raises MissingBaseMetadataError if
        none of them describes the size.
        """
        source_id = str(source_id)
        with self.lock(source_id):
            existing = self.get(source_id)
            size = existing.sizes.get(size_name) if existing else None

            if size is None and base is not None:
                size = base.sizes.get(size_name)
            if size is None:
                size = self._size_from_upstream(
                    size_name, upstream_sizes, original_dimensions
                )
            if size is None:
                raise MissingBaseMetadataError(
                    f"No base metadata for size '{size_name}' of source '{source_id}'"
                )

            update = CatalogRecord(
                source_id=source_id,
                sizes={
                    size_name: SizeVariant(
                        width=size.width, height=size.height, formats={format: entry}
                    )
                },
            )
            return self._merge_and_save(source_id, update)

    def try_add_format_variation(
        self,
        source_id: SourceId,
        size_name: str,
        format: str,
        entry: FormatEntry,
        **kwargs,
    ) -> bool:
        try:
            self.add_format_variation(source_id, size_name, format, entry, **kwargs)
        except MissingBaseMetadataError:
            self._logger.warning(
                f"Can't add format '{format}' to size '{size_name}' of source '{source_id}' without base metadata"
            )
            return False
        return True

    def get_size_variations(
        self, source_id: SourceId, size_name: str
    ) -> Optional[SizeVariant]:
        record = self.get(source_id)
        if record is None:
            return None
        return record.sizes.get(size_name)

    def get_format(
        self, source_id: SourceId, size_name: str, format: str
    ) -> Optional[FormatEntry]:
        record = self.get(source_id)
        if record is None:
            return None
        return record.get_format(size_name, format)

    def available_formats(self, source_id: SourceId) -> set[str]:
        record = self.get(source_id)
        if record is None:
            return set()
        return record.available_formats()

    def has_format(self, source_id: SourceId, format: str) -> bool:
        record = self.get(source_id)
        return record is not None and record.has_format(format)

    def find_id_by_file(self, original_file: str) -> Optional[str]:
        select_statement = select(CatalogRecordRow.source_id).where(
            CatalogRecordRow.original_file == original_file
        )
        with self.__sessionmaker() as session:
            return session.scalars(select_statement).first()

    def find_by_stem(self, stem: str) -> Optional[tuple[str, str]]:
        """
        Finds the source whose original file is `stem` plus any extension.

        Returns (source_id, original_file) or None.
        """
        select_statement = select(
            CatalogRecordRow.source_id, CatalogRecordRow.original_file
        ).where(CatalogRecordRow.original_file.startswith(f"{stem}.", autoescape=True))

        with self.__sessionmaker() as session:
            for source_id, original_file in session.execute(select_statement):
                if original_file.rsplit(".", 1)[0] == stem:
                    return source_id, original_file
        return None

    def get_ids(self) -> list[str]:
        select_statement = select(CatalogRecordRow.source_id).order_by(
            CatalogRecordRow.source_id
        )
        with self.__sessionmaker() as session:
            return list(session.scalars(select_statement).all())

    def count(self) -> int:
        select_statement = select(func.count()).select_from(CatalogRecordRow)
        with self.__sessionmaker() as session:
            return session.execute(select_statement).scalar() or 0

    def _merge_and_save(self, source_id: str, record: CatalogRecord) -> CatalogRecord:
        with self.__sessionmaker.begin() as session:
            row = session.get(CatalogRecordRow, source_id)
            if row is None:
                merged = CatalogRecord(source_id=source_id).merge(record)
                session.add(
                    CatalogRecordRow(
                        source_id=source_id,
                        original_file=merged.file,
                        document=merged.to_dict(),
                    )
                )
                self._logger.debug(f"Created catalog record for source '{source_id}'")
            else:
                merged = self._load_or_reset(row).merge(record)
                row.original_file = merged.file
                row.document = merged.to_dict()
                self._logger.debug(f"Updated catalog record for source '{source_id}'")

        merged.source_id = source_id
        return merged

    def _load_or_reset(self, row: CatalogRecordRow) -> CatalogRecord:
        try:
            return CatalogRecord.from_dict(row.source_id, row.document)
        except ValueError:
            self._logger.warning(
                f"Replacing malformed catalog record for source '{row.source_id}'"
            )
            return CatalogRecord(source_id=row.source_id, file=row.original_file)

    @staticmethod
    def _size_from_upstream(
        size_name: str,
        upstream_sizes: Optional[dict[str, UpstreamSize]],
        original_dimensions: Optional[tuple[int, int]],
    ) -> Optional[SizeVariant]:
        if size_name == Constants.ORIGINAL_SIZE_NAME:
            if original_dimensions is None:
                return None
            width, height = original_dimensions
            return SizeVariant(width=width, height=height)

        if upstream_sizes and size_name in upstream_sizes:
            upstream = upstream_sizes[size_name]
            return SizeVariant(width=upstream.width, height=upstream.height)

        return None
