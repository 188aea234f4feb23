"""Chunked blob storage models - PDF bytes kept in the metadata database.

A StoredBlob row is inserted only after every BlobChunk of the blob has been
committed, so a blob without a manifest row is an incomplete write.
"""
from datetime import datetime
from sqlalchemy import String, Integer, BigInteger, LargeBinary, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from archive.models.base import Base


class StoredBlob(Base):
    __tablename__ = "blobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BlobChunk(Base):
    __tablename__ = "blob_chunks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    blob_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    __table_args__ = (
        UniqueConstraint("blob_id", "seq", name="uq_blob_chunk"),
    )
