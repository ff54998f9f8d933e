"""Result database models and session helpers."""

from .db_models import (
    AnalysisRecordModel,
    Base,
    DeliveredNotificationModel,
    FaceDetectionModel,
    RecordTagModel,
)
from .db_session import create_result_engine, init_db

__all__ = [
    "AnalysisRecordModel",
    "Base",
    "DeliveredNotificationModel",
    "FaceDetectionModel",
    "RecordTagModel",
    "create_result_engine",
    "init_db",
]
