"""Persistence of aggregated analyses and the notification delivery ledger."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.db_models import (
    AnalysisRecordModel,
    DeliveredNotificationModel,
    FaceDetectionModel,
    RecordTagModel,
)
from ..domain.models import AggregatedAnalysis, Tag, TagCategory

logger = logging.getLogger(__name__)


def _unique_by_name(tags: Iterable[Tag]) -> list[Tag]:
    """One tag per name; a ``location`` tag replaces an earlier namesake."""

    chosen: dict[str, Tag] = {}
    for tag in tags:
        current = chosen.get(tag.name)
        if current is None or (
            tag.category is TagCategory.LOCATION and current.category is not TagCategory.LOCATION
        ):
            chosen[tag.name] = tag
    return list(chosen.values())


class SqlAlchemyResultSink:
    """Writes analysis rows keyed by record id; re-runs replace earlier rows."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def persist_analysis(self, record_id: str, analysis: AggregatedAnalysis) -> None:
        with self._session_factory() as session, session.begin():
            record = session.get(AnalysisRecordModel, record_id)
            if record is None:
                record = AnalysisRecordModel(record_id=record_id)
                session.add(record)
            record.caption = analysis.caption
            record.objects_json = (
                [obj.to_dict() for obj in analysis.objects] if analysis.objects is not None else None
            )
            record.extracted_text_json = (
                list(analysis.extracted_text) if analysis.extracted_text is not None else None
            )
            record.scene_label = analysis.scene.label if analysis.scene else None
            record.scene_confidence = analysis.scene.confidence if analysis.scene else None
            record.processing_time_ms = analysis.processing_time_ms
            record.analyzed_at = datetime.now(timezone.utc)

            record.tags.clear()
            record.faces.clear()
            session.flush()

            for tag in _unique_by_name(analysis.tags):
                record.tags.append(
                    RecordTagModel(
                        name=tag.name,
                        category=tag.category.value,
                        confidence=tag.confidence,
                        synonyms_json=list(tag.synonyms) if tag.synonyms else None,
                        related_tags_json=list(tag.related_tags) if tag.related_tags else None,
                    )
                )
            for face in analysis.faces or ():
                box = face.bounding_box
                record.faces.append(
                    FaceDetectionModel(
                        x=box.x,
                        y=box.y,
                        width=box.width,
                        height=box.height,
                        confidence=face.confidence,
                        landmarks_json=dict(face.landmarks) if face.landmarks else None,
                    )
                )
        logger.debug("Persisted analysis for record %s", record_id)

    def load_analysis(self, record_id: str) -> AnalysisRecordModel | None:
        with self._session_factory() as session:
            record = session.get(AnalysisRecordModel, record_id)
            if record is not None:
                # Load relationships before the session closes.
                _ = list(record.tags), list(record.faces)
            return record

    def notification_recorded(self, notification_id: str) -> bool:
        with self._session_factory() as session:
            return session.get(DeliveredNotificationModel, notification_id) is not None

    def record_notification(self, notification_id: str) -> bool:
        """Record a delivery; return ``False`` when it was already recorded."""

        with self._session_factory() as session:
            session.add(DeliveredNotificationModel(notification_id=notification_id))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True


__all__ = ["SqlAlchemyResultSink"]
