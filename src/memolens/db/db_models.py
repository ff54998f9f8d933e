"""SQLAlchemy ORM models for persisted analysis results."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base declarative class."""


class AnalysisRecordModel(Base):
    __tablename__ = "analysis_record"

    record_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    caption: Mapped[str | None] = mapped_column(Text)
    objects_json: Mapped[list | None] = mapped_column(JSON)
    extracted_text_json: Mapped[list | None] = mapped_column(JSON)
    scene_label: Mapped[str | None] = mapped_column(String(128))
    scene_confidence: Mapped[float | None] = mapped_column(Float)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analyzed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    tags: Mapped[list["RecordTagModel"]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="RecordTagModel.id",
    )
    faces: Mapped[list["FaceDetectionModel"]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="FaceDetectionModel.id",
    )


class RecordTagModel(Base):
    __tablename__ = "record_tag"
    __table_args__ = (UniqueConstraint("record_id", "name", name="uq_record_tag_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("analysis_record.record_id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    synonyms_json: Mapped[list | None] = mapped_column(JSON)
    related_tags_json: Mapped[list | None] = mapped_column(JSON)

    record: Mapped[AnalysisRecordModel] = relationship(back_populates="tags")


class FaceDetectionModel(Base):
    __tablename__ = "face_detection"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("analysis_record.record_id"), nullable=False, index=True
    )
    x: Mapped[float] = mapped_column(Float, nullable=False)
    y: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    landmarks_json: Mapped[dict | None] = mapped_column(JSON)

    record: Mapped[AnalysisRecordModel] = relationship(back_populates="faces")


class DeliveredNotificationModel(Base):
    __tablename__ = "delivered_notification"

    notification_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    delivered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


__all__ = [
    "AnalysisRecordModel",
    "Base",
    "DeliveredNotificationModel",
    "FaceDetectionModel",
    "RecordTagModel",
]
