from sqlalchemy import Column, String, Float, Boolean, UniqueConstraint

from fieldphoto.database import Base


class PhotoSnapshot(Base):
    __tablename__ = "job_photos"
    __table_args__ = (
        UniqueConstraint("job_id", "category_id", name="uq_job_photos_slot"),
    )

    id = Column(String, primary_key=True)
    job_id = Column(String, nullable=False)
    category_id = Column(String, nullable=False)
    url = Column(String, nullable=True)
    thumb_url = Column(String, nullable=True)
    selected_photo_id = Column(String, nullable=True)
    selection_pinned = Column(Boolean, nullable=False, default=False)
    serial_number = Column(String, nullable=True)
    cable_meter = Column(Float, nullable=True)
    ocr_status = Column(String, nullable=True)
    updated_at = Column(String, nullable=False)
