from sqlalchemy import Column, String, Float, Index

from fieldphoto.database import Base


class PhotoEntry(Base):
    """One immutable uploaded photo variant in a slot's history."""

    __tablename__ = "job_photo_entries"
    __table_args__ = (
        Index("ix_job_photo_entries_slot", "job_id", "category_id", "created_at"),
    )

    id = Column(String, primary_key=True)
    job_id = Column(String, nullable=False)
    category_id = Column(String, nullable=False)
    url = Column(String, nullable=False)
    thumb_url = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
    sharpness = Column(Float, nullable=True)
    token = Column(String, nullable=True)
