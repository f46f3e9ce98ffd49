from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CatalogRecordRow(Base):
    __tablename__ = "catalog_record"

    source_id: Mapped[str] = mapped_column(String, primary_key=True)
    # path of the original relative to the uploads directory
    original_file: Mapped[Optional[str]] = mapped_column(String, index=True)
    document: Mapped[dict] = mapped_column(JSON)

    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    date_modified: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, index=True
    )
