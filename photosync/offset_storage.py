import logging
import os
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from photosync import models
from photosync.camera_offsets import CameraOffsetsError
from photosync.database import make_session_factory
from photosync.timestamp import Timestamp

logger = logging.getLogger(__name__)

OffsetData = Dict[str, List[Dict[str, Optional[str]]]]


def load_camera_offsets(path: str) -> OffsetData:
    """
    Reads the persisted camera offsets in the form CameraOffsetStore.import_data
    accepts. A missing file means no offsets; an unreadable one is fatal.
    """
    if not os.path.exists(path):
        logger.info(f"No camera offsets file at '{path}'")
        return {}

    try:
        SessionLocal = make_session_factory(path)
        with SessionLocal() as db:
            rows = db.query(models.CameraOffsetRecord).order_by(
                models.CameraOffsetRecord.camera_id, models.CameraOffsetRecord.id).all()
    except SQLAlchemyError as e:
        raise CameraOffsetsError(f"Cannot read camera offsets from '{path}': {e}") from e

    data: OffsetData = {}
    for row in rows:
        if row.reference_time is None:
            raise CameraOffsetsError(f"Invalid reference time for camera '{row.camera_id}' in '{path}'")
        data.setdefault(row.camera_id, []).append({
            "reference_time": str(row.reference_time),
            "offset_time": row.offset_time,
            "offset_timezone": row.offset_timezone,
        })
    logger.info(f"Read {len(rows)} camera offset(s) for {len(data)} camera(s) from '{path}'")
    return data


def save_camera_offsets(path: str, data: OffsetData):
    """Replaces the persisted camera offsets with `data` (as produced by export_data)."""
    try:
        SessionLocal = make_session_factory(path)
        with SessionLocal() as db:
            db.query(models.CameraOffsetRecord).delete()
            for camera_id, samples in data.items():
                for sample in samples:
                    db.add(models.CameraOffsetRecord(
                        camera_id=camera_id,
                        reference_time=Timestamp.parse(sample["reference_time"]),
                        offset_time=sample["offset_time"],
                        offset_timezone=sample.get("offset_timezone"),
                    ))
            db.commit()
    except SQLAlchemyError as e:
        raise CameraOffsetsError(f"Cannot write camera offsets to '{path}': {e}") from e
    logger.info(f"Wrote camera offsets of {len(data)} camera(s) to '{path}'")
