from sqlalchemy import Column, Integer, String, UniqueConstraint
from sqlalchemy.types import TypeDecorator

from photosync.database import Base
from photosync.timestamp import Timestamp


## CUSTOM TYPES
class TimestampText(TypeDecorator):
    """
    Stores a Timestamp as TEXT in its ISO-like form, with the timezone offset when
    it has one, e.g. "2020-07-30T08:22:30+02:00" or "2020-07-30T08:22:30".

    Text that does not parse comes back as None.
    """
    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Timestamp):
            raise TypeError("TimestampText column requires Timestamp objects")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Timestamp.parse(value)


## MODELS
class CameraOffsetRecord(Base):
    """One learned camera offset sample. A NULL offset_timezone marks the legacy form."""
    __tablename__ = 'camera_offsets'

    id = Column(Integer, primary_key=True)
    camera_id = Column(String, nullable=False, index=True)
    reference_time = Column(TimestampText, nullable=False)
    offset_time = Column(String, nullable=False)
    offset_timezone = Column(String, nullable=True)

    __table_args__ = (UniqueConstraint('camera_id', 'reference_time', name='_camera_reference_uc'),)

    def __repr__(self):
        return f"<CameraOffsetRecord({self.camera_id} @ {self.reference_time}: {self.offset_time}{self.offset_timezone or ''})>"
