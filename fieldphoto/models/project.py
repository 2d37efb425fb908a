from sqlalchemy import Column, String

from fieldphoto.database import Base


class Project(Base):
    __tablename__ = "projects"

    job_id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")
    pending_since = Column(String, nullable=True)
    pending_reason = Column(String, nullable=True)
